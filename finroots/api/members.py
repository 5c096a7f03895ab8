import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..agents.gateway import run_once
from ..agents.registry import Agents
from ..models.schemas import LeadSourceMaster, Member, UpsellOpportunity
from ..pipelines.errors import CrmError, CrmNotFoundError
from ..pipelines.lead_sources import LeadSourceTree
from ..pipelines.members import MemberQuery, MemberRow, SearchMode, StatusFilter, member_pipeline
from ..pipelines.paging import Page
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
    get_toasts,
    get_visibility,
    http_error,
    outcome,
)

logger = logging.getLogger(__name__)


class MemberListResponse(BaseModel):
    page: Page[MemberRow]
    ai: GatewayOutcome


class MemberDetailResponse(BaseModel):
    member: Member
    lead_source_path: List[LeadSourceMaster]
    lead_source_category: str


class UpsellResponse(BaseModel):
    opportunity: Optional[UpsellOpportunity] = None
    ai: GatewayOutcome


router = APIRouter(prefix="/members", tags=["members"])


def visible_member(store: CrmStore, visibility: VisibilityPolicy, member_id: str) -> Member:
    member = store.get_member(member_id)
    if not visibility.members([member]):
        raise CrmNotFoundError(f"Member {member_id} not found")
    return member


@router.get("", response_model=MemberListResponse)
async def list_members(
    q: Optional[str] = Query(None, description="Natural language search (ai mode)"),
    status: StatusFilter = Query("Active"),
    search_mode: SearchMode = Query("ai"),
    name: str = Query(""),
    city: str = Query(""),
    member_type: str = Query("All"),
    created_only: bool = Query(False),
    sort_key: str = Query("name"),
    descending: bool = Query(False),
    page: int = Query(1, ge=1),
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    settings: Settings = Depends(get_app_settings),
) -> MemberListResponse:
    try:
        query = MemberQuery(
            status=status,
            search_mode=search_mode,
            name=name,
            city=city,
            member_type=member_type,
            created_only=created_only,
            sort_key=sort_key,
            descending=descending,
            page=page,
        )
        result = None
        ai_ids = None
        if search_mode == "ai" and q and q.strip():
            scoped = visibility.members(store.members, created_only=created_only)
            result = await run_once(
                agents.in_flight,
                (visibility.user.id, "member-search"),
                lambda: agents.search.search_members(q, scoped, notify=toasts.add),
            )
            # A pending search leaves the list as if nothing had been searched yet
            ai_ids = None if result.is_pending else result.value

        rows = member_pipeline(
            store.members,
            store.users,
            store.branches,
            visibility,
            query,
            ai_match_ids=ai_ids,
            page_size=settings.page_size,
        )
        return MemberListResponse(page=rows, ai=outcome(result, toasts))
    except Exception as e:
        logger.error(f"Error listing members: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{member_id}", response_model=MemberDetailResponse)
async def get_member(
    member_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> MemberDetailResponse:
    try:
        member = visible_member(store, visibility, member_id)
        tree = LeadSourceTree(store.lead_sources)
        source_id = member.lead_source.source_id if member.lead_source else None
        return MemberDetailResponse(
            member=member,
            lead_source_path=tree.path(source_id),
            lead_source_category=tree.root_name(source_id),
        )
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{member_id}/upsell", response_model=UpsellResponse)
async def suggest_upsell(
    member_id: str,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    now: datetime = Depends(get_now),
) -> UpsellResponse:
    try:
        member = visible_member(store, visibility, member_id)
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "upsell", member_id),
            lambda: agents.insights.upsell_for_member(member, now, notify=toasts.add),
        )
        return UpsellResponse(opportunity=result.value, ai=outcome(result, toasts))
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
