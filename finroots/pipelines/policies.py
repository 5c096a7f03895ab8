import logging
import uuid
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field

from ..models.schemas import ActivityEntry, Branch, Member, MemberTier, Policy, User
from ..utils.dates import add_years
from .errors import CrmNotFoundError
from .paging import DEFAULT_PAGE_SIZE, Page, paginate, stable_sort
from .visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

RenewalStatus = Literal["Overdue", "Pending", "Active"]

NOT_AVAILABLE = "N/A"
RENEWAL_PENDING_DAYS = 30
DEFAULT_VALUE_BOUNDS = (0.0, 100000.0)


class PolicyNotFoundError(CrmNotFoundError):
    pass


class PolicyRow(BaseModel):
    pk: int
    member_id: str
    member_name: str
    policy: Policy
    days_left: int
    renewal_status: RenewalStatus
    advisor_id: Optional[str] = None
    advisor_name: str = NOT_AVAILABLE
    branch_id: Optional[str] = None
    branch_name: str = NOT_AVAILABLE


class PolicyFilters(BaseModel):
    renewal_start: Optional[date] = None
    renewal_end: Optional[date] = None
    premium_min: Optional[float] = None
    premium_max: Optional[float] = None
    advisors: Set[str] = Field(default_factory=set)
    branches: Set[str] = Field(default_factory=set)
    commission_status: Optional[str] = None


class RenewalSummary(BaseModel):
    total: int
    overdue: int
    due_in_7: int
    due_in_30: int


class PolicyPage(BaseModel):
    page: Page[PolicyRow]
    summary: RenewalSummary
    value_bounds: Tuple[float, float]


def visible_policies(member: Member) -> List[Policy]:
    """Family policies surface only through the family's SPOC."""
    return [
        p for p in member.policies
        if p.policy_holder_type != "Family" or member.is_spoc
    ]


def days_until(renewal: date, today: date) -> int:
    # Calendar dates, so this is the day-truncated difference
    return (renewal - today).days


def renewal_status(days_left: int, pending_days: int = RENEWAL_PENDING_DAYS) -> RenewalStatus:
    if days_left < 0:
        return "Overdue"
    if days_left <= pending_days:
        return "Pending"
    return "Active"


def build_policy_rows(
    members: Iterable[Member],
    users: Iterable[User],
    branches: Iterable[Branch],
    today: date,
    pending_days: int = RENEWAL_PENDING_DAYS,
) -> List[PolicyRow]:
    users_by_id: Dict[str, User] = {u.id: u for u in users}
    branches_by_id: Dict[str, Branch] = {b.id: b for b in branches}

    rows = []
    pk = 1
    for member in members:
        advisor = users_by_id.get(member.assigned_to[0]) if member.assigned_to else None
        branch = branches_by_id.get(advisor.branch_id) if advisor and advisor.branch_id else None
        for policy in visible_policies(member):
            days_left = days_until(policy.renewal_date, today)
            rows.append(PolicyRow(
                pk=pk,
                member_id=member.id,
                member_name=member.name,
                policy=policy,
                days_left=days_left,
                renewal_status=renewal_status(days_left, pending_days),
                advisor_id=advisor.id if advisor else None,
                advisor_name=advisor.name if advisor else NOT_AVAILABLE,
                branch_id=branch.id if branch else None,
                branch_name=branch.branch_name if branch else NOT_AVAILABLE,
            ))
            pk += 1
    return rows


def value_bounds(members: Iterable[Member]) -> Tuple[float, float]:
    premiums = [p.premium for m in members for p in visible_policies(m)]
    if not premiums:
        return DEFAULT_VALUE_BOUNDS
    return min(premiums), max(premiums)


def filter_policy_rows(
    rows: Iterable[PolicyRow],
    filters: PolicyFilters,
    bounds: Tuple[float, float] = DEFAULT_VALUE_BOUNDS,
) -> List[PolicyRow]:
    premium_min = filters.premium_min if filters.premium_min is not None else bounds[0]
    premium_max = filters.premium_max if filters.premium_max is not None else bounds[1]

    result = []
    for row in rows:
        if filters.advisors and row.advisor_id not in filters.advisors:
            continue
        if filters.branches and row.branch_id not in filters.branches:
            continue
        if not premium_min <= row.policy.premium <= premium_max:
            continue
        # Dates compare whole days, so the end bound covers the full day
        if filters.renewal_start and row.policy.renewal_date < filters.renewal_start:
            continue
        if filters.renewal_end and row.policy.renewal_date > filters.renewal_end:
            continue
        if filters.commission_status and filters.commission_status not in ("All", "All Statuses"):
            commission = row.policy.commission
            if commission is None or commission.status != filters.commission_status:
                continue
        result.append(row)
    return result


POLICY_SORT_KEYS: Dict[str, Callable[[PolicyRow], object]] = {
    "pk": lambda r: r.pk,
    "member_name": lambda r: r.member_name.lower(),
    "policy_type": lambda r: r.policy.policy_type,
    "premium": lambda r: r.policy.premium,
    "renewal_date": lambda r: r.policy.renewal_date,
    "days_left": lambda r: r.days_left,
    "renewal_status": lambda r: r.renewal_status,
    "advisor_name": lambda r: r.advisor_name if r.advisor_id else None,
    "branch_name": lambda r: r.branch_name if r.branch_id else None,
}


def sort_policy_rows(rows: List[PolicyRow], sort_key: str = "days_left", descending: bool = False) -> List[PolicyRow]:
    key = POLICY_SORT_KEYS.get(sort_key)
    if key is None:
        return list(rows)
    return stable_sort(rows, key, descending)


def renewal_summary(rows: Iterable[PolicyRow]) -> RenewalSummary:
    rows = list(rows)
    return RenewalSummary(
        total=len(rows),
        overdue=sum(1 for r in rows if r.days_left < 0),
        due_in_7=sum(1 for r in rows if 0 <= r.days_left <= 7),
        due_in_30=sum(1 for r in rows if 7 < r.days_left <= 30),
    )


def policy_pipeline(
    members: Iterable[Member],
    users: Iterable[User],
    branches: Iterable[Branch],
    today: date,
    filters: Optional[PolicyFilters] = None,
    sort_key: str = "days_left",
    descending: bool = False,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    visibility: Optional[VisibilityPolicy] = None,
    pending_days: int = RENEWAL_PENDING_DAYS,
) -> PolicyPage:
    members = visibility.members(members) if visibility else list(members)
    bounds = value_bounds(members)
    rows = build_policy_rows(members, users, branches, today, pending_days)
    rows = filter_policy_rows(rows, filters or PolicyFilters(), bounds)
    rows = sort_policy_rows(rows, sort_key, descending)
    return PolicyPage(
        page=paginate(rows, page, page_size),
        summary=renewal_summary(rows),
        value_bounds=bounds,
    )


def member_tier(member: Member) -> MemberTier:
    total = sum(p.premium for p in member.policies)
    if total > 50000:
        return "Platinum"
    if total > 30000:
        return "Diamond"
    if total > 15000:
        return "Gold"
    return "Silver"


def renew_policy(member: Member, policy_id: str, now: datetime) -> Tuple[Member, ActivityEntry]:
    """Push a policy's renewal date out by a year and re-tier the member."""
    policy = next((p for p in member.policies if p.id == policy_id), None)
    if policy is None:
        raise PolicyNotFoundError(f"Policy {policy_id} not found for member {member.id}")

    renewed = policy.model_copy(update={"renewal_date": add_years(policy.renewal_date, 1)})
    policies = [renewed if p.id == policy_id else p for p in member.policies]
    updated = member.model_copy(update={"policies": policies})
    updated = updated.model_copy(update={"member_type": member_tier(updated)})

    entry = ActivityEntry(
        id=f"act-{uuid.uuid4().hex[:12]}",
        type="renewalSuccess",
        message=f"{policy.policy_type} policy for {member.name} renewed until {renewed.renewal_date.isoformat()}.",
        timestamp=now.isoformat(),
        member_id=member.id,
        policy_id=policy_id,
    )
    logger.info(f"Renewed policy {policy_id} for member {member.id}; tier now {updated.member_type}")
    return updated, entry
