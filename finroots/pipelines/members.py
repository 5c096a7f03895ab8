from typing import Callable, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel

from ..models.schemas import Branch, Member, User
from ..utils.dates import epoch_seconds
from .paging import DEFAULT_PAGE_SIZE, Page, paginate, stable_sort
from .visibility import VisibilityPolicy

SearchMode = Literal["ai", "advanced"]
StatusFilter = Literal["Active", "Inactive", "All"]


class MemberQuery(BaseModel):
    status: StatusFilter = "Active"
    search_mode: SearchMode = "ai"
    name: str = ""
    city: str = ""
    member_type: str = "All"
    created_only: bool = False
    sort_key: str = "name"
    descending: bool = False
    page: int = 1


class MemberRow(BaseModel):
    member: Member
    advisor_names: str
    branch_name: Optional[str] = None
    customer_group: Literal["Family", "Individual"]


def customer_group(member: Member) -> str:
    return "Family" if member.is_spoc or member.spoc_id else "Individual"


def build_member_rows(
    members: Iterable[Member],
    users: Iterable[User],
    branches: Iterable[Branch],
) -> List[MemberRow]:
    users_by_id = {u.id: u for u in users}
    branches_by_id = {b.id: b for b in branches}
    rows = []
    for member in members:
        advisors = [users_by_id[uid] for uid in member.assigned_to if uid in users_by_id]
        first = advisors[0] if advisors else None
        branch = branches_by_id.get(first.branch_id) if first and first.branch_id else None
        rows.append(MemberRow(
            member=member,
            advisor_names=", ".join(a.name for a in advisors),
            branch_name=branch.branch_name if branch else None,
            customer_group=customer_group(member),
        ))
    return rows


def _lower_or_none(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else None


MEMBER_SORT_KEYS: Dict[str, Callable[[MemberRow], object]] = {
    "name": lambda r: r.member.name.lower(),
    "assigned_to": lambda r: _lower_or_none(r.advisor_names),
    "branch": lambda r: _lower_or_none(r.branch_name),
    "member_type": lambda r: r.member.member_type,
    "customer_group": lambda r: r.customer_group,
    "city": lambda r: _lower_or_none(r.member.city),
    "status": lambda r: r.member.active,
    "created_at": lambda r: epoch_seconds(r.member.created_at) if r.member.created_at else None,
}


def filter_members(
    members: Iterable[Member],
    query: MemberQuery,
    ai_match_ids: Optional[Iterable[str]] = None,
) -> List[Member]:
    """
    Apply the AI match set, the status filter and (in advanced mode) the
    field filters.

    ``ai_match_ids`` is None when no search was performed. An empty list
    means a search ran and matched nothing, so nothing is returned.
    """
    result = list(members)
    if query.search_mode == "ai" and ai_match_ids is not None:
        matches = set(ai_match_ids)
        result = [m for m in result if m.id in matches]

    if query.status != "All":
        want_active = query.status == "Active"
        result = [m for m in result if m.active == want_active]

    if query.search_mode == "advanced":
        name = query.name.strip().lower()
        city = query.city.strip().lower()
        if name:
            result = [m for m in result if name in m.name.lower()]
        if city:
            result = [m for m in result if city in m.city.lower()]
        if query.member_type and query.member_type != "All":
            result = [m for m in result if m.member_type == query.member_type]
    return result


def member_pipeline(
    members: Iterable[Member],
    users: Iterable[User],
    branches: Iterable[Branch],
    visibility: VisibilityPolicy,
    query: Optional[MemberQuery] = None,
    ai_match_ids: Optional[Iterable[str]] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Page[MemberRow]:
    query = query or MemberQuery()
    scoped = visibility.members(members, created_only=query.created_only)
    filtered = filter_members(scoped, query, ai_match_ids)
    rows = build_member_rows(filtered, users, branches)
    key = MEMBER_SORT_KEYS.get(query.sort_key)
    if key is not None:
        rows = stable_sort(rows, key, query.descending)
    return paginate(rows, query.page, page_size)
