import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..models.schemas import Lead, LeadStatus
from ..pipelines.errors import CrmError
from ..pipelines.lead_sources import LeadSourceTree
from ..pipelines.leads import LeadFilters, SalesPipeline, move_lead, sales_pipeline
from ..pipelines.visibility import VisibilityPolicy
from ..services.store import CrmStore
from .deps import get_store, get_visibility, http_error

logger = logging.getLogger(__name__)


class LeadStatusRequest(BaseModel):
    status: LeadStatus


router = APIRouter(prefix="/leads", tags=["leads"])


@router.get("/pipeline", response_model=SalesPipeline)
async def get_sales_pipeline(
    created_start: Optional[date] = Query(None),
    created_end: Optional[date] = Query(None),
    value_min: Optional[float] = Query(None),
    value_max: Optional[float] = Query(None),
    advisors: List[str] = Query([]),
    branches: List[str] = Query([]),
    lead_source_id: Optional[str] = Query(None),
    policy_interest_type: Optional[str] = Query(None),
    policy_interest_general_type: Optional[str] = Query(None),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> SalesPipeline:
    try:
        filters = LeadFilters(
            created_start=created_start,
            created_end=created_end,
            value_min=value_min,
            value_max=value_max,
            advisors=set(advisors),
            branches=set(branches),
            lead_source_id=lead_source_id,
            policy_interest_type=policy_interest_type,
            policy_interest_general_type=policy_interest_general_type,
        )
        return sales_pipeline(store.leads, LeadSourceTree(store.lead_sources), filters, visibility)
    except Exception as e:
        logger.error(f"Error building sales pipeline: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/{lead_id}/status", response_model=Lead)
async def update_lead_status(
    lead_id: str,
    request: LeadStatusRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> Lead:
    try:
        lead = move_lead(store.get_lead(lead_id), request.status, visibility)
        store.save_lead(lead)
        return lead
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
