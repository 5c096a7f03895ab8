from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel

from ..agents.gateway import AiResult
from ..agents.registry import Agents
from ..models.schemas import User
from ..pipelines.errors import CrmError, CrmNotFoundError, CrmPermissionError
from ..pipelines.visibility import VisibilityPolicy
from ..services.notifications import Toast, ToastCollector
from ..services.store import CrmStore
from ..settings import Settings, get_settings
from ..utils.dates import utc_now


class GatewayOutcome(BaseModel):
    """How an AI-backed part of a response was produced."""
    state: Optional[str] = None
    toasts: List[Toast] = []


def get_store(request: Request) -> CrmStore:
    return request.app.state.store


def get_agents(request: Request) -> Agents:
    return request.app.state.agents


def get_app_settings() -> Settings:
    return get_settings()


def get_now() -> datetime:
    return utc_now()


def get_today() -> date:
    return utc_now().date()


def get_toasts() -> ToastCollector:
    return ToastCollector()


def get_current_user(request: Request, x_user_id: Optional[str] = Header(default=None)) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    user = get_store(request).find_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail=f"Unknown user {x_user_id}")
    return user


def get_visibility(user: User = Depends(get_current_user)) -> VisibilityPolicy:
    return VisibilityPolicy(user)


def http_error(e: CrmError) -> HTTPException:
    if isinstance(e, CrmNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, CrmPermissionError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def outcome(result: Optional[AiResult], toasts: ToastCollector) -> GatewayOutcome:
    return GatewayOutcome(state=result.kind if result else None, toasts=toasts.drain())
