import json
import logging
from typing import Iterable, List, Optional

from pydantic import TypeAdapter

from ..models.schemas import DigipinDetails
from ..pipelines.geo import CustomerDistance, GeoPoint, haversine_km, nearest_neighbour_order
from .gateway import AiResult, GeminiAgent, Notifier

logger = logging.getLogger(__name__)

_ID_LIST = TypeAdapter(List[str])

SMART_TRIP_SIZE = 3


def _customer_payload(customers: Iterable[CustomerDistance]) -> str:
    return json.dumps([
        {"id": c.member_id, "name": c.name, "city": c.city, "lat": c.lat, "lng": c.lng}
        for c in customers
    ])


class RouteAgent(GeminiAgent):
    """Route planning helpers for field visits."""

    async def optimal_route(
        self,
        origin: GeoPoint,
        customers: List[CustomerDistance],
        notify: Optional[Notifier] = None,
    ) -> AiResult[List[str]]:
        """Order customers into an efficient visiting route starting at origin."""
        ids = [c.member_id for c in customers]
        if len(customers) <= 1:
            return AiResult.ok(ids)
        fallback = nearest_neighbour_order(origin, {c.member_id: GeoPoint(c.lat, c.lng) for c in customers})

        async def call() -> List[str]:
            prompt = f"""
You are a route planner. Starting from latitude {origin.lat}, longitude {origin.lng},
order the customers below into the shortest driving route that visits each exactly once.
Return a JSON array containing every customer id exactly once, in visiting order.

Customers:
{_customer_payload(customers)}
"""
            route = _ID_LIST.validate_python(
                await self._generate_json(prompt, temperature=0, response_schema=list[str])
            )
            if sorted(route) != sorted(ids):
                raise ValueError("Route does not visit every customer exactly once")
            return route

        return await self._guarded("route optimization", call, fallback=fallback, notify=notify)

    async def clients_on_route(
        self,
        start: GeoPoint,
        end: GeoPoint,
        customers: List[CustomerDistance],
        notify: Optional[Notifier] = None,
    ) -> AiResult[List[str]]:
        """Customers close enough to the start-to-end drive to be worth a stop."""
        async def call() -> List[str]:
            prompt = f"""
An advisor is driving from ({start.lat}, {start.lng}) to ({end.lat}, {end.lng}).
From the customers below, pick those within a short detour of that route.
Return a JSON array of their ids, [] if none.

Customers:
{_customer_payload(customers)}
"""
            known = {c.member_id for c in customers}
            ids = _ID_LIST.validate_python(
                await self._generate_json(prompt, temperature=0, response_schema=list[str])
            )
            return [i for i in ids if i in known]

        return await self._guarded("route search", call, fallback=[], notify=notify)

    async def smart_trip(
        self,
        origin: GeoPoint,
        customers: List[CustomerDistance],
        notify: Optional[Notifier] = None,
    ) -> AiResult[List[str]]:
        """Suggest a small cluster of customers to visit today."""
        nearest = sorted(customers, key=lambda c: haversine_km(origin, GeoPoint(c.lat, c.lng)))
        fallback = [c.member_id for c in nearest[:SMART_TRIP_SIZE]]

        async def call() -> List[str]:
            prompt = f"""
An advisor is at ({origin.lat}, {origin.lng}). Suggest up to {SMART_TRIP_SIZE} customers who are
close to each other and to the advisor, so they can be visited in one short trip.
Return a JSON array of customer ids.

Customers:
{_customer_payload(customers)}
"""
            known = {c.member_id for c in customers}
            ids = _ID_LIST.validate_python(
                await self._generate_json(prompt, temperature=0.2, response_schema=list[str])
            )
            trip = [i for i in ids if i in known]
            if not trip:
                raise ValueError("No known customers in smart trip suggestion")
            return trip

        return await self._guarded("smart trip", call, fallback=fallback, notify=notify)

    async def enrich_location(
        self,
        lat: float,
        lng: float,
        notify: Optional[Notifier] = None,
    ) -> AiResult[DigipinDetails]:
        fallback = DigipinDetails(
            summary="A busy commercial area with several shops.",
            landmarks=["Nearby Landmark A", "Local Park B", "City Hall C"],
        )

        async def call() -> DigipinDetails:
            prompt = f"""
Given the coordinates latitude={lat} and longitude={lng}, describe the area in one sentence
and list up to 3 notable nearby landmarks.
Return JSON with "summary" (string) and "landmarks" (array of strings).
"""
            data = await self._generate_json(prompt, temperature=0.3, response_schema=DigipinDetails)
            return DigipinDetails.model_validate(data)

        return await self._guarded("location enrichment", call, fallback=fallback, notify=notify)
