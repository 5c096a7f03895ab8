import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..agents.gateway import run_once
from ..agents.registry import Agents
from ..models.schemas import GrowthPoint
from ..pipelines.analytics import AnalyticsReport, analytics_report, simulated_growth, splice_forecast
from ..pipelines.visibility import VisibilityPolicy
from ..services.notifications import ToastCollector
from ..services.store import CrmStore
from .deps import GatewayOutcome, get_agents, get_store, get_today, get_toasts, get_visibility, outcome

logger = logging.getLogger(__name__)


class ForecastResponse(BaseModel):
    series: List[GrowthPoint]
    ai: GatewayOutcome


router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("", response_model=AnalyticsReport)
async def get_analytics(
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    today: date = Depends(get_today),
) -> AnalyticsReport:
    try:
        return analytics_report(store.members, store.lead_sources, today, visibility)
    except Exception as e:
        logger.error(f"Error building analytics: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/forecast", response_model=ForecastResponse)
async def forecast(
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    today: date = Depends(get_today),
) -> ForecastResponse:
    try:
        history = simulated_growth(len(visibility.members(store.members)), today)
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "forecast"),
            lambda: agents.insights.forecast_growth(history, notify=toasts.add),
        )
        series = splice_forecast(history, result.value) if result.value else history
        return ForecastResponse(series=series, ai=outcome(result, toasts))
    except Exception as e:
        logger.error(f"Error forecasting growth: {e}")
        raise HTTPException(status_code=500, detail=str(e))
