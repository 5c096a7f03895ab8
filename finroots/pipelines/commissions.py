import logging
from datetime import date
from typing import Iterable, List, Optional

from pydantic import BaseModel

from ..models.schemas import CommissionStatus, Member
from .policies import PolicyNotFoundError

logger = logging.getLogger(__name__)

ALL_STATUSES = "All Statuses"


class CommissionRow(BaseModel):
    id: str
    member_id: str
    member_name: str
    policy_id: str
    policy_type: str
    policy_premium: float
    commission_amount: float
    status: str
    renewal_date: date


class CommissionSummary(BaseModel):
    paid: float = 0
    pending: float = 0
    total_tracked: int = 0


class CommissionLedger(BaseModel):
    rows: List[CommissionRow]
    summary: CommissionSummary


def commission_rows(members: Iterable[Member]) -> List[CommissionRow]:
    """One row per policy carrying a commission, latest renewal first."""
    rows = [
        CommissionRow(
            id=f"{member.id}-{policy.id}",
            member_id=member.id,
            member_name=member.name,
            policy_id=policy.id,
            policy_type=policy.policy_type,
            policy_premium=policy.premium,
            commission_amount=policy.commission.amount,
            status=policy.commission.status,
            renewal_date=policy.renewal_date,
        )
        for member in members
        for policy in member.policies
        if policy.commission and policy.commission.amount > 0
    ]
    rows.sort(key=lambda r: r.renewal_date, reverse=True)
    return rows


def commission_summary(rows: Iterable[CommissionRow]) -> CommissionSummary:
    summary = CommissionSummary()
    for row in rows:
        if row.status == "Paid":
            summary.paid += row.commission_amount
        elif row.status == "Pending":
            summary.pending += row.commission_amount
        summary.total_tracked += 1
    return summary


def commission_ledger(members: Iterable[Member], status: Optional[str] = None) -> CommissionLedger:
    """
    Commission rows narrowed to one status.

    The summary covers every tracked commission, not only the rows shown.
    """
    rows = commission_rows(members)
    shown = rows if not status or status == ALL_STATUSES else [r for r in rows if r.status == status]
    return CommissionLedger(rows=shown, summary=commission_summary(rows))


def update_commission_status(member: Member, policy_id: str, status: CommissionStatus) -> Member:
    policy = next((p for p in member.policies if p.id == policy_id), None)
    if policy is None:
        raise PolicyNotFoundError(f"Policy {policy_id} not found for member {member.id}")
    if policy.commission is None:
        logger.info(f"Policy {policy_id} has no commission; status left unchanged")
        return member

    commission = policy.commission.model_copy(update={"status": status})
    policies = [
        p.model_copy(update={"commission": commission}) if p.id == policy_id else p
        for p in member.policies
    ]
    logger.info(f"Commission for policy {policy_id} of member {member.id} marked {status}")
    return member.model_copy(update={"policies": policies})
