import logging
import math
from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from ..models.schemas import Lead, LeadStatus
from ..utils.dates import end_of_day, epoch_seconds, parse_timestamp, start_of_day
from .errors import CrmPermissionError
from .lead_sources import LeadSourceTree
from .visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

# Board columns; Won and Lost leads leave the board
PIPELINE_STAGES = ("Lead", "Contacted", "Meeting Scheduled", "Proposal Sent")
UNASSIGNED_BRANCH = "unassigned"
DEFAULT_LEAD_VALUE_BOUNDS = (0, 100000)


class LeadFilters(BaseModel):
    created_start: Optional[date] = None
    created_end: Optional[date] = None
    value_min: Optional[float] = None
    value_max: Optional[float] = None
    advisors: Set[str] = Field(default_factory=set)
    # "unassigned" selects leads without a branch
    branches: Set[str] = Field(default_factory=set)
    lead_source_id: Optional[str] = None
    policy_interest_type: Optional[str] = None
    policy_interest_general_type: Optional[str] = None


class SalesPipeline(BaseModel):
    stages: Dict[str, List[Lead]]
    total: int
    won: int
    conversion_rate: float
    pipeline_value: float
    value_bounds: Tuple[float, float]


def lead_value_bounds(leads: Iterable[Lead]) -> Tuple[float, float]:
    """Estimated value range rounded out to whole thousands."""
    values = [l.estimated_value for l in leads if l.estimated_value > 0]
    if not values:
        return DEFAULT_LEAD_VALUE_BOUNDS
    return math.floor(min(values) / 1000) * 1000, math.ceil(max(values) / 1000) * 1000


def filter_leads(
    leads: Iterable[Lead],
    filters: LeadFilters,
    tree: LeadSourceTree,
) -> List[Lead]:
    start = start_of_day(filters.created_start) if filters.created_start else None
    end = end_of_day(filters.created_end) if filters.created_end else None
    source_ids = None
    if filters.lead_source_id:
        source_ids = {filters.lead_source_id, *tree.descendant_ids(filters.lead_source_id)}
    branch_ids = filters.branches - {UNASSIGNED_BRANCH}

    result = []
    for lead in leads:
        created = parse_timestamp(lead.created_at)
        # Leads without a creation time are kept by the date filters
        if created is not None:
            if start and created < start:
                continue
            if end and created > end:
                continue
        if filters.value_min is not None and lead.estimated_value < filters.value_min:
            continue
        if filters.value_max is not None and lead.estimated_value > filters.value_max:
            continue
        if filters.advisors and lead.assigned_to not in filters.advisors:
            continue
        if filters.branches:
            in_branch = bool(lead.branch_id) and lead.branch_id in branch_ids
            unassigned = UNASSIGNED_BRANCH in filters.branches and not lead.branch_id
            if not (in_branch or unassigned):
                continue
        if source_ids is not None:
            source_id = lead.lead_source.source_id if lead.lead_source else None
            if source_id not in source_ids:
                continue
        if filters.policy_interest_type and lead.policy_interest_type != filters.policy_interest_type:
            continue
        if (
            filters.policy_interest_type == "General Insurance"
            and filters.policy_interest_general_type
            and lead.policy_interest_general_type != filters.policy_interest_general_type
        ):
            continue
        result.append(lead)
    return result


def conversion_rate(leads: Iterable[Lead]) -> float:
    """Won leads as a percentage of every lead not lost."""
    leads = list(leads)
    considered = [l for l in leads if l.status != "Lost"]
    if not considered:
        return 0.0
    won = sum(1 for l in leads if l.status == "Won")
    return won / len(considered) * 100


def pipeline_value(leads: Iterable[Lead]) -> float:
    return sum(l.estimated_value for l in leads if l.status not in ("Won", "Lost"))


def group_by_stage(leads: Iterable[Lead]) -> Dict[str, List[Lead]]:
    """Board columns, newest lead first in each."""
    newest_first = sorted(leads, key=lambda l: epoch_seconds(l.created_at), reverse=True)
    stages: Dict[str, List[Lead]] = {stage: [] for stage in PIPELINE_STAGES}
    for lead in newest_first:
        if lead.status in stages:
            stages[lead.status].append(lead)
    return stages


def sales_pipeline(
    leads: Iterable[Lead],
    tree: LeadSourceTree,
    filters: Optional[LeadFilters] = None,
    visibility: Optional[VisibilityPolicy] = None,
) -> SalesPipeline:
    """
    Kanban board for the leads in scope.

    Filters narrow the board only. Won count, conversion rate and open
    pipeline value are measured over every lead in scope.
    """
    leads = visibility.leads(leads) if visibility else list(leads)
    bounds = lead_value_bounds(leads)
    shown = filter_leads(leads, filters or LeadFilters(), tree)
    return SalesPipeline(
        stages=group_by_stage(shown),
        total=len(shown),
        won=sum(1 for l in leads if l.status == "Won"),
        conversion_rate=conversion_rate(leads),
        pipeline_value=pipeline_value(leads),
        value_bounds=bounds,
    )


def move_lead(lead: Lead, status: LeadStatus, visibility: VisibilityPolicy) -> Lead:
    if not visibility.is_admin and lead.assigned_to != visibility.user.id:
        raise CrmPermissionError("You are not assigned to this lead.")
    if lead.status == status:
        return lead
    logger.info(f"Lead {lead.id} moved from {lead.status} to {status} by {visibility.user.id}")
    return lead.model_copy(update={"status": status})
