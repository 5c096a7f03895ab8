import logging
from datetime import date, datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..agents.gateway import run_once
from ..agents.registry import Agents
from ..models.schemas import Notification, TodaysFocusItem
from ..pipelines.policies import build_policy_rows
from ..pipelines.tasks import TaskQuery, task_pipeline
from ..pipelines.notes import CLOSED_LEAD_STATUSES
from ..pipelines.visibility import VisibilityPolicy
from ..services.notifications import ToastCollector
from ..services.store import CrmStore
from .deps import GatewayOutcome, get_agents, get_now, get_store, get_today, get_toasts, get_visibility, outcome
from .tasks import task_context

logger = logging.getLogger(__name__)

FOCUS_RENEWAL_DAYS = 7
FOCUS_TASK_LIMIT = 50


class ChatRequest(BaseModel):
    message: str


class ChatResponse(BaseModel):
    reply: str
    ai: GatewayOutcome


class FocusResponse(BaseModel):
    items: List[TodaysFocusItem]
    ai: GatewayOutcome


router = APIRouter(prefix="/assistant", tags=["assistant"])


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    today: date = Depends(get_today),
) -> ChatResponse:
    try:
        members = visibility.members(store.members)
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "chat"),
            lambda: agents.insights.chat(request.message, members, today, notify=toasts.add),
        )
        return ChatResponse(reply=result.value or "", ai=outcome(result, toasts))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/focus", response_model=FocusResponse)
async def todays_focus(
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    today: date = Depends(get_today),
    now: datetime = Depends(get_now),
) -> FocusResponse:
    try:
        user = visibility.user
        tasks = task_pipeline(
            [t for t in store.tasks if not t.is_completed],
            task_context(store),
            visibility,
            now,
            TaskQuery(),
            page_size=FOCUS_TASK_LIMIT,
        ).items
        renewals = [
            row for row in build_policy_rows(visibility.members(store.members), store.users, store.branches, today)
            if row.days_left <= FOCUS_RENEWAL_DAYS
        ]
        leads = [
            l for l in store.leads
            if l.status not in CLOSED_LEAD_STATUSES and visibility.sees_lead_notes(l)
        ]
        result = await run_once(
            agents.in_flight,
            (user.id, "focus"),
            lambda: agents.insights.todays_focus(user, tasks, renewals, leads, today, notify=toasts.add),
        )
        return FocusResponse(items=result.value or [], ai=outcome(result, toasts))
    except Exception as e:
        logger.error(f"Error building today's focus: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/notifications", response_model=List[Notification])
async def notifications(
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> List[Notification]:
    return store.notifications_for(visibility.user.id)
