import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..agents.gateway import run_once
from ..agents.registry import Agents
from ..models.schemas import Member
from ..pipelines.errors import CrmError, CrmValidationError
from ..pipelines.geo import (
    CustomerDistance,
    GeoPoint,
    customers_by_distance,
    encode_digipin,
    group_by_city,
    member_coordinates,
    resolve_origin,
)
from ..pipelines.visibility import VisibilityPolicy
from ..services.notifications import ToastCollector
from ..services.store import CrmStore
from ..settings import Settings
from .deps import (
    GatewayOutcome,
    get_agents,
    get_app_settings,
    get_store,
    get_toasts,
    get_visibility,
    http_error,
    outcome,
)
from .members import visible_member

logger = logging.getLogger(__name__)


class Coordinates(BaseModel):
    lat: float
    lng: float


class NearbyCustomersResponse(BaseModel):
    origin: Coordinates
    warning: Optional[str] = None
    customers: List[CustomerDistance]
    by_city: Dict[str, List[CustomerDistance]]


class RouteRequest(BaseModel):
    origin: Optional[Coordinates] = None
    member_ids: List[str]


class OnTheWayRequest(BaseModel):
    start: Coordinates
    end: Coordinates


class TripRequest(BaseModel):
    origin: Optional[Coordinates] = None


class EnrichResponse(BaseModel):
    member: Member
    ai: GatewayOutcome


class RouteResponse(BaseModel):
    member_ids: List[str]
    warning: Optional[str] = None
    ai: GatewayOutcome


router = APIRouter(prefix="/location", tags=["location"])


def _origin(coords: Optional[Coordinates], settings: Settings):
    point = GeoPoint(coords.lat, coords.lng) if coords else None
    return resolve_origin(point, GeoPoint(settings.default_lat, settings.default_lng))


@router.get("/customers", response_model=NearbyCustomersResponse)
async def nearby_customers(
    lat: Optional[float] = Query(None),
    lng: Optional[float] = Query(None),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    settings: Settings = Depends(get_app_settings),
) -> NearbyCustomersResponse:
    try:
        coords = Coordinates(lat=lat, lng=lng) if lat is not None and lng is not None else None
        origin, warning = _origin(coords, settings)
        rows = customers_by_distance(visibility.members(store.members), origin)
        return NearbyCustomersResponse(
            origin=Coordinates(lat=origin.lat, lng=origin.lng),
            warning=warning,
            customers=rows,
            by_city=group_by_city(rows),
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/route", response_model=RouteResponse)
async def optimal_route(
    request: RouteRequest,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    settings: Settings = Depends(get_app_settings),
) -> RouteResponse:
    try:
        origin, warning = _origin(request.origin, settings)
        wanted = set(request.member_ids)
        members = [m for m in visibility.members(store.members) if m.id in wanted]
        customers = customers_by_distance(members, origin)
        if len(customers) != len(wanted):
            raise CrmValidationError("Every stop needs a visible customer with a known location.")
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "route"),
            lambda: agents.route.optimal_route(origin, customers, notify=toasts.add),
        )
        return RouteResponse(member_ids=result.value or [], warning=warning, ai=outcome(result, toasts))
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/on-the-way", response_model=RouteResponse)
async def clients_on_route(
    request: OnTheWayRequest,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
) -> RouteResponse:
    try:
        start = GeoPoint(request.start.lat, request.start.lng)
        end = GeoPoint(request.end.lat, request.end.lng)
        customers = customers_by_distance(visibility.members(store.members), start)
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "on-the-way"),
            lambda: agents.route.clients_on_route(start, end, customers, notify=toasts.add),
        )
        return RouteResponse(member_ids=result.value or [], ai=outcome(result, toasts))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/smart-trip", response_model=RouteResponse)
async def smart_trip(
    request: TripRequest,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    settings: Settings = Depends(get_app_settings),
) -> RouteResponse:
    try:
        origin, warning = _origin(request.origin, settings)
        customers = customers_by_distance(visibility.members(store.members), origin)
        result = await run_once(
            agents.in_flight,
            (visibility.user.id, "smart-trip"),
            lambda: agents.route.smart_trip(origin, customers, notify=toasts.add),
        )
        return RouteResponse(member_ids=result.value or [], warning=warning, ai=outcome(result, toasts))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/members/{member_id}/enrich", response_model=EnrichResponse)
async def enrich_member_location(
    member_id: str,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
) -> EnrichResponse:
    """Fill in a member's digipin and area description from their coordinates."""
    try:
        member = visible_member(store, visibility, member_id)
        point = member_coordinates(member)
        if point is None:
            raise CrmValidationError("Member has no coordinates or valid digipin.")
        result = await agents.route.enrich_location(point.lat, point.lng, notify=toasts.add)
        updated = member.model_copy(update={
            "digipin": member.digipin or encode_digipin(point.lat, point.lng),
            "digipin_details": result.value,
        })
        store.save_member(updated)
        return EnrichResponse(member=updated, ai=outcome(result, toasts))
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
