import calendar
from collections import Counter
from datetime import date
from typing import Iterable, List, Optional

from pydantic import BaseModel

from ..models.schemas import GrowthPoint, LeadSourceMaster, Member
from ..utils.dates import add_years
from .lead_sources import LeadSourceTree
from .policies import visible_policies
from .visibility import VisibilityPolicy

GROWTH_MONTHS = 6
UNKNOWN_STATE = "Unknown"


class NamedCount(BaseModel):
    name: str
    value: int


class AnalyticsReport(BaseModel):
    total_premium: float
    avg_policies_per_customer: float
    renewal_histogram: List[NamedCount]
    lead_sources: List[NamedCount]
    growth: List[GrowthPoint]
    states: List[NamedCount]


def total_premium(members: Iterable[Member]) -> float:
    return sum(p.premium for m in members for p in visible_policies(m))


def avg_policies_per_customer(members: Iterable[Member]) -> float:
    members = list(members)
    if not members:
        return 0.0
    return sum(len(visible_policies(m)) for m in members) / len(members)


def renewal_histogram(members: Iterable[Member], today: date) -> List[NamedCount]:
    """Renewals due in the coming year, bucketed by month starting with the current one."""
    counts = [0] * 12
    horizon = add_years(today, 1)
    for member in members:
        for policy in visible_policies(member):
            if today <= policy.renewal_date < horizon:
                counts[(policy.renewal_date.month - today.month) % 12] += 1
    return [
        NamedCount(name=calendar.month_abbr[(today.month - 1 + i) % 12 + 1], value=counts[i])
        for i in range(12)
    ]


def lead_source_distribution(members: Iterable[Member], sources: Iterable[LeadSourceMaster]) -> List[NamedCount]:
    distribution = LeadSourceTree(sources).distribution(members)
    return [NamedCount(name=name, value=count) for name, count in distribution.items()]


def _shift_month(day: date, months: int) -> date:
    index = day.year * 12 + day.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def simulated_growth(member_count: int, today: date) -> List[GrowthPoint]:
    """
    Placeholder growth curve: spreads the current member count over the last
    six months and accumulates it. Not derived from creation dates.
    """
    per_month = member_count // GROWTH_MONTHS
    added = [per_month] * (GROWTH_MONTHS - 1) + [member_count - per_month * (GROWTH_MONTHS - 1)]
    points = []
    running = 0
    for i, count in enumerate(added):
        month = _shift_month(today, i - (GROWTH_MONTHS - 1))
        running += count
        points.append(GrowthPoint(name=month.strftime("%b '%y"), customers=running))
    return points


def state_table(members: Iterable[Member]) -> List[NamedCount]:
    counts = Counter((m.state or "").strip() or UNKNOWN_STATE for m in members)
    return [NamedCount(name=name, value=value) for name, value in counts.most_common()]


def splice_forecast(history: List[GrowthPoint], forecast: Iterable[GrowthPoint]) -> List[GrowthPoint]:
    """
    Join forecast points onto the historical series.

    The last historical point also carries the forecast value so the two
    lines meet.
    """
    series = [p.model_copy() for p in history]
    if not series:
        return [p.model_copy() for p in forecast]
    last = series[-1]
    series[-1] = last.model_copy(update={"forecast": last.customers})
    by_name = {p.name: i for i, p in enumerate(series)}
    for point in forecast:
        value = point.forecast if point.forecast is not None else point.customers
        if point.name in by_name:
            index = by_name[point.name]
            series[index] = series[index].model_copy(update={"forecast": value})
        else:
            by_name[point.name] = len(series)
            series.append(GrowthPoint(name=point.name, forecast=value))
    return series


def analytics_report(
    members: Iterable[Member],
    sources: Iterable[LeadSourceMaster],
    today: date,
    visibility: Optional[VisibilityPolicy] = None,
) -> AnalyticsReport:
    members = visibility.members(members) if visibility else list(members)
    return AnalyticsReport(
        total_premium=total_premium(members),
        avg_policies_per_customer=avg_policies_per_customer(members),
        renewal_histogram=renewal_histogram(members, today),
        lead_sources=lead_source_distribution(members, sources),
        growth=simulated_growth(len(members), today),
        states=state_table(members),
    )
