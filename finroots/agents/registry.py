from dataclasses import dataclass, field
from typing import Any, Optional

from ..settings import Settings
from .gateway import InFlightRegistry
from .insights_agent import InsightsAgent
from .notes_agent import NotesAgent
from .route_agent import RouteAgent
from .search_agent import SearchAgent


@dataclass
class Agents:
    search: SearchAgent
    notes: NotesAgent
    route: RouteAgent
    insights: InsightsAgent
    in_flight: InFlightRegistry = field(default_factory=InFlightRegistry)


def build_agents(settings: Settings, client: Optional[Any] = None) -> Agents:
    """All gateway agents sharing one configuration (and, in tests, one fake client)."""
    kwargs = dict(api_key=settings.gemini_api_key, model_name=settings.gemini_model, client=client)
    return Agents(
        search=SearchAgent(**kwargs),
        notes=NotesAgent(**kwargs),
        route=RouteAgent(**kwargs),
        insights=InsightsAgent(**kwargs),
    )
