from datetime import date

import pytest

from finroots.models.schemas import Lead, LeadSource
from finroots.pipelines.errors import CrmPermissionError
from finroots.pipelines.lead_sources import LeadSourceTree
from finroots.pipelines.leads import (
    LeadFilters,
    conversion_rate,
    filter_leads,
    group_by_stage,
    lead_value_bounds,
    move_lead,
    pipeline_value,
    sales_pipeline,
)
from finroots.pipelines.visibility import VisibilityPolicy


def make_lead(lead_id, status="Lead", assigned_to="adv-1", value=10000, created="2026-10-01T08:00:00", **kwargs):
    return Lead(
        id=lead_id,
        name=lead_id.title(),
        status=status,
        assigned_to=assigned_to,
        estimated_value=value,
        created_at=created,
        **kwargs,
    )


@pytest.fixture
def tree(lead_sources):
    return LeadSourceTree(lead_sources)


# =============================================================================
# Metrics
# =============================================================================

class TestMetrics:

    def test_conversion_rate_excludes_lost(self):
        leads = [make_lead("a", "Won"), make_lead("b", "Lost"), make_lead("c"), make_lead("d", "Contacted")]
        assert conversion_rate(leads) == pytest.approx(100 / 3)

    def test_conversion_rate_without_open_leads(self):
        assert conversion_rate([make_lead("a", "Lost")]) == 0
        assert conversion_rate([]) == 0

    def test_pipeline_value_counts_open_leads(self):
        leads = [make_lead("a", "Won", value=5000), make_lead("b", "Lost", value=7000), make_lead("c", value=1200)]
        assert pipeline_value(leads) == 1200

    def test_value_bounds_round_to_thousands(self):
        leads = [make_lead("a", value=1500), make_lead("b", value=48200), make_lead("c", value=0)]
        assert lead_value_bounds(leads) == (1000, 49000)
        assert lead_value_bounds([make_lead("a", value=0)]) == (0, 100000)


# =============================================================================
# Board
# =============================================================================

class TestBoard:

    def test_stages_newest_first_and_closed_leads_left_out(self):
        leads = [
            make_lead("old", created="2026-09-01T08:00:00"),
            make_lead("new", created="2026-10-10T08:00:00"),
            make_lead("undated", created=None),
            make_lead("won", "Won"),
            make_lead("meet", "Meeting Scheduled"),
        ]
        stages = group_by_stage(leads)
        assert list(stages) == ["Lead", "Contacted", "Meeting Scheduled", "Proposal Sent"]
        assert [l.id for l in stages["Lead"]] == ["new", "old", "undated"]
        assert [l.id for l in stages["Meeting Scheduled"]] == ["meet"]
        assert stages["Proposal Sent"] == []

    def test_filters_narrow_board_but_not_metrics(self, tree):
        leads = [make_lead("a", value=2000), make_lead("b", value=90000), make_lead("c", "Won")]
        board = sales_pipeline(leads, tree, LeadFilters(value_max=5000))
        assert [l.id for l in board.stages["Lead"]] == ["a"]
        assert board.total == 1
        assert board.won == 1
        assert board.pipeline_value == 92000
        assert board.conversion_rate == pytest.approx(100 / 3)

    def test_advisor_sees_own_leads(self, tree, advisor):
        leads = [make_lead("mine"), make_lead("theirs", assigned_to="adv-2")]
        board = sales_pipeline(leads, tree, visibility=VisibilityPolicy(advisor))
        assert [l.id for l in board.stages["Lead"]] == ["mine"]


# =============================================================================
# Filters
# =============================================================================

class TestLeadFilters:

    def ids(self, leads, tree, **filters):
        return [l.id for l in filter_leads(leads, LeadFilters(**filters), tree)]

    def test_created_range_includes_end_day(self, tree):
        leads = [
            make_lead("sep", created="2026-09-30T23:00:00"),
            make_lead("oct", created="2026-10-05T18:30:00"),
            make_lead("undated", created=None),
        ]
        assert self.ids(leads, tree, created_start=date(2026, 10, 1), created_end=date(2026, 10, 5)) == [
            "oct", "undated",
        ]

    def test_branch_filter_with_unassigned(self, tree):
        leads = [make_lead("mum", branch_id="b-1"), make_lead("pun", branch_id="b-2"), make_lead("none")]
        assert self.ids(leads, tree, branches={"b-1"}) == ["mum"]
        assert self.ids(leads, tree, branches={"b-1", "unassigned"}) == ["mum", "none"]

    def test_lead_source_includes_descendants(self, tree):
        leads = [
            make_lead("leaf", lead_source=LeadSource(source_id="ls-leaf")),
            make_lead("root", lead_source=LeadSource(source_id="ls-root")),
            make_lead("none"),
        ]
        assert self.ids(leads, tree, lead_source_id="ls-mid") == ["leaf"]
        assert self.ids(leads, tree, lead_source_id="ls-root") == ["leaf", "root"]

    def test_general_insurance_subtype(self, tree):
        leads = [
            make_lead("motor", policy_interest_type="General Insurance", policy_interest_general_type="Motor"),
            make_lead("home", policy_interest_type="General Insurance", policy_interest_general_type="Home"),
            make_lead("life", policy_interest_type="Life"),
        ]
        assert self.ids(leads, tree, policy_interest_type="General Insurance") == ["motor", "home"]
        assert self.ids(
            leads, tree, policy_interest_type="General Insurance", policy_interest_general_type="Motor",
        ) == ["motor"]

    def test_advisor_filter(self, tree):
        leads = [make_lead("a"), make_lead("b", assigned_to="adv-2")]
        assert self.ids(leads, tree, advisors={"adv-2"}) == ["b"]


class TestMoveLead:

    def test_assignee_moves_lead(self, advisor):
        moved = move_lead(make_lead("a"), "Proposal Sent", VisibilityPolicy(advisor))
        assert moved.status == "Proposal Sent"

    def test_other_advisor_cannot_move(self, other_advisor):
        with pytest.raises(CrmPermissionError):
            move_lead(make_lead("a"), "Lost", VisibilityPolicy(other_advisor))
