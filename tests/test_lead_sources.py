from finroots.models.schemas import LeadSource, LeadSourceMaster
from finroots.pipelines.lead_sources import LeadSourceTree
from tests.conftest import make_member


class TestLeadSourceTree:

    def test_root_of_chain(self, lead_sources):
        tree = LeadSourceTree(lead_sources)
        assert tree.root_name("ls-leaf") == "Referral"
        assert tree.root_name("ls-root") == "Referral"

    def test_path_is_root_first(self, lead_sources):
        tree = LeadSourceTree(lead_sources)
        assert [n.id for n in tree.path("ls-leaf")] == ["ls-root", "ls-mid", "ls-leaf"]

    def test_unknown_and_missing_source(self, lead_sources):
        tree = LeadSourceTree(lead_sources)
        assert tree.root_name("nope") == "Unknown"
        assert tree.root_name(None) == "Unknown"
        assert tree.path(None) == []

    def test_dangling_parent_stops_at_last_known_node(self):
        tree = LeadSourceTree([LeadSourceMaster(id="a", name="A", parent_id="gone")])
        assert tree.root_name("a") == "A"

    def test_cycle_is_unknown(self):
        tree = LeadSourceTree([
            LeadSourceMaster(id="a", name="A", parent_id="b"),
            LeadSourceMaster(id="b", name="B", parent_id="a"),
        ])
        assert tree.root_name("a") == "Unknown"
        assert tree.path("b") == []

    def test_distribution_counts_root_categories(self, lead_sources):
        members = [
            make_member("m1", lead_source=LeadSource(source_id="ls-leaf")),
            make_member("m2", lead_source=LeadSource(source_id="ls-mid")),
            make_member("m3"),
        ]
        assert LeadSourceTree(lead_sources).distribution(members) == {"Referral": 2, "Unknown": 1}

    def test_descendants(self, lead_sources):
        tree = LeadSourceTree(lead_sources)
        assert tree.descendant_ids("ls-root") == ["ls-mid", "ls-leaf"]
        assert tree.descendant_ids("ls-leaf") == []
        assert tree.descendant_ids("nope") == []

    def test_descendants_terminate_on_cycle(self):
        tree = LeadSourceTree([
            LeadSourceMaster(id="a", name="A", parent_id="b"),
            LeadSourceMaster(id="b", name="B", parent_id="a"),
        ])
        assert tree.descendant_ids("a") == ["b"]
