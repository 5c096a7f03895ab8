import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from ..agents.gateway import run_once
from ..agents.registry import Agents
from ..models.schemas import ActivityEntry, Member, PaymentDetails
from ..pipelines.errors import CrmError
from ..pipelines.policies import PolicyFilters, PolicyNotFoundError, PolicyPage, policy_pipeline, renew_policy
from ..pipelines.visibility import VisibilityPolicy
from ..services.notifications import ToastCollector
from ..services.store import CrmStore
from ..settings import Settings
from .deps import (
    GatewayOutcome,
    get_agents,
    get_app_settings,
    get_now,
    get_store,
    get_today,
    get_toasts,
    get_visibility,
    http_error,
    outcome,
)
from .members import visible_member

logger = logging.getLogger(__name__)


class RenewResponse(BaseModel):
    member: Member
    activity: ActivityEntry


class PaymentProofResponse(BaseModel):
    payment_details: PaymentDetails
    ai: GatewayOutcome


router = APIRouter(prefix="/policies", tags=["policies"])


@router.get("", response_model=PolicyPage)
async def list_policies(
    renewal_start: Optional[date] = Query(None),
    renewal_end: Optional[date] = Query(None),
    premium_min: Optional[float] = Query(None),
    premium_max: Optional[float] = Query(None),
    advisors: List[str] = Query([]),
    branches: List[str] = Query([]),
    commission_status: Optional[str] = Query(None),
    sort_key: str = Query("days_left"),
    descending: bool = Query(False),
    page: int = Query(1, ge=1),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    today: date = Depends(get_today),
    settings: Settings = Depends(get_app_settings),
) -> PolicyPage:
    try:
        filters = PolicyFilters(
            renewal_start=renewal_start,
            renewal_end=renewal_end,
            premium_min=premium_min,
            premium_max=premium_max,
            advisors=set(advisors),
            branches=set(branches),
            commission_status=commission_status,
        )
        return policy_pipeline(
            store.members,
            store.users,
            store.branches,
            today,
            filters=filters,
            sort_key=sort_key,
            descending=descending,
            page=page,
            page_size=settings.page_size,
            visibility=visibility,
            pending_days=settings.renewal_pending_days,
        )
    except Exception as e:
        logger.error(f"Error listing policies: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{member_id}/{policy_id}/renew", response_model=RenewResponse)
async def renew(
    member_id: str,
    policy_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> RenewResponse:
    try:
        member = visible_member(store, visibility, member_id)
        updated, entry = renew_policy(member, policy_id, now)
        store.save_member(updated)
        store.add_activity(entry)
        return RenewResponse(member=updated, activity=entry)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{member_id}/{policy_id}/payment-proof", response_model=PaymentProofResponse)
async def verify_payment_proof(
    member_id: str,
    policy_id: str,
    file: UploadFile = File(...),
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
) -> PaymentProofResponse:
    try:
        member = visible_member(store, visibility, member_id)
        policy = next((p for p in member.policies if p.id == policy_id), None)
        if policy is None:
            raise PolicyNotFoundError(f"Policy {policy_id} not found for member {member_id}")

        image = await file.read()
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "payment-proof", policy_id),
            lambda: agents.insights.analyze_payment_proof(
                image, file.content_type or "image/png", policy.premium, notify=toasts.add
            ),
        )
        if result.is_pending:
            return PaymentProofResponse(
                payment_details=policy.payment_details or PaymentDetails(),
                ai=outcome(result, toasts),
            )

        policies = [
            p.model_copy(update={"payment_details": result.value}) if p.id == policy_id else p
            for p in member.policies
        ]
        store.save_member(member.model_copy(update={"policies": policies}))
        return PaymentProofResponse(payment_details=result.value, ai=outcome(result, toasts))
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
