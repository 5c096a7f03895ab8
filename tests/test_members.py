from finroots.pipelines.members import MemberQuery, customer_group, filter_members, member_pipeline
from finroots.pipelines.visibility import VisibilityPolicy
from tests.conftest import make_member


def _members():
    return [
        make_member("m1", ["adv-1"], name="Charlie", city="Mumbai", member_type="Gold", created_by="adv-1"),
        make_member("m2", ["adv-2"], name="alice", city="Pune", created_by="adv-1"),
        make_member("m3", ["adv-1"], name="Bob", city="Mumbai", active=False, created_by="admin"),
    ]


class TestFilterMembers:

    def test_no_search_returns_all_active(self):
        assert [m.id for m in filter_members(_members(), MemberQuery())] == ["m1", "m2"]

    def test_ai_matches_intersect(self):
        assert [m.id for m in filter_members(_members(), MemberQuery(), ["m2", "m3", "ghost"])] == ["m2"]

    def test_empty_match_list_returns_nothing(self):
        assert filter_members(_members(), MemberQuery(), []) == []

    def test_ai_matches_ignored_in_advanced_mode(self):
        query = MemberQuery(search_mode="advanced", city="mum", status="All")
        assert [m.id for m in filter_members(_members(), query, [])] == ["m1", "m3"]

    def test_advanced_name_and_tier(self):
        query = MemberQuery(search_mode="advanced", name="CHAR", member_type="Gold")
        assert [m.id for m in filter_members(_members(), query)] == ["m1"]

    def test_inactive_filter(self):
        assert [m.id for m in filter_members(_members(), MemberQuery(status="Inactive"))] == ["m3"]


class TestMemberPipeline:

    def test_admin_sorted_by_name(self, admin, users, branches):
        page = member_pipeline(_members(), users, branches, VisibilityPolicy(admin), MemberQuery(status="All"))
        assert [r.member.id for r in page.items] == ["m2", "m3", "m1"]
        assert page.items[2].advisor_names == "Ravi Advisor"
        assert page.items[2].branch_name == "Mumbai"

    def test_advisor_sees_assigned_or_created(self, advisor, users, branches):
        page = member_pipeline(_members(), users, branches, VisibilityPolicy(advisor), MemberQuery(status="All"))
        assert {r.member.id for r in page.items} == {"m1", "m2", "m3"}

    def test_advisor_created_only(self, advisor, users, branches):
        query = MemberQuery(status="All", created_only=True)
        page = member_pipeline(_members(), users, branches, VisibilityPolicy(advisor), query)
        assert {r.member.id for r in page.items} == {"m1", "m2"}

    def test_other_advisor_scope(self, other_advisor, users, branches):
        page = member_pipeline(_members(), users, branches, VisibilityPolicy(other_advisor))
        assert [r.member.id for r in page.items] == ["m2"]

    def test_missing_created_at_sorts_last(self, admin, users, branches):
        members = [
            make_member("old", created_at="2024-01-01T00:00:00"),
            make_member("none"),
            make_member("new", created_at="2025-01-01T00:00:00Z"),
        ]
        query = MemberQuery(sort_key="created_at", descending=True)
        page = member_pipeline(members, users, branches, VisibilityPolicy(admin), query)
        assert [r.member.id for r in page.items] == ["new", "old", "none"]

    def test_customer_group(self):
        assert customer_group(make_member("a", is_spoc=True)) == "Family"
        assert customer_group(make_member("b", spoc_id="a")) == "Family"
        assert customer_group(make_member("c")) == "Individual"
