import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..models.schemas import CommissionStatus, Policy
from ..pipelines.commissions import CommissionLedger, commission_ledger, update_commission_status
from ..pipelines.errors import CrmError, CrmPermissionError
from ..pipelines.visibility import VisibilityPolicy
from ..services.store import CrmStore
from .deps import get_store, get_visibility, http_error

logger = logging.getLogger(__name__)


class CommissionStatusRequest(BaseModel):
    status: CommissionStatus


router = APIRouter(prefix="/commissions", tags=["commissions"])


def require_admin(visibility: VisibilityPolicy) -> None:
    if not visibility.is_admin:
        raise CrmPermissionError("Only admins can manage commissions.")


@router.get("", response_model=CommissionLedger)
async def list_commissions(
    status: Optional[str] = Query(None),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> CommissionLedger:
    try:
        require_admin(visibility)
        return commission_ledger(store.members, status)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error listing commissions: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/{member_id}/{policy_id}", response_model=Policy)
async def set_commission_status(
    member_id: str,
    policy_id: str,
    request: CommissionStatusRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> Policy:
    try:
        require_admin(visibility)
        updated = update_commission_status(store.get_member(member_id), policy_id, request.status)
        store.save_member(updated)
        return next(p for p in updated.policies if p.id == policy_id)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
