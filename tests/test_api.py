"""
API tests against the FastAPI app with an in-memory store.

The lifespan is not run: each test installs its own store, agents without a
Gemini key (so every AI call takes its fallback) and no Redis pool unless
a test installs a fake one.
"""

import json

import pytest
from fastapi.testclient import TestClient

from finroots.agents.insights_agent import CHAT_FALLBACK
from finroots.agents.registry import build_agents
from finroots.api.deps import get_app_settings, get_now, get_today
from finroots.main import app
from finroots.models.schemas import VoiceNote
from finroots.pipelines.geo import DEFAULT_LOCATION_WARNING
from finroots.services.store import CrmStore
from finroots.settings import Settings
from finroots.worker import voice_note_key
from tests.conftest import FakeRedis, NOW, TODAY

ADMIN = {"X-User-Id": "admin"}
ADVISOR = {"X-User-Id": "adv-1"}
OTHER_ADVISOR = {"X-User-Id": "adv-2"}


@pytest.fixture
def store(snapshot):
    return CrmStore(snapshot)


@pytest.fixture
def client(store):
    settings = Settings(gemini_api_key=None, bucket_name=None, page_size=10)
    app.state.store = store
    app.state.agents = build_agents(settings)
    app.state.redis_pool = None
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_today] = lambda: TODAY
    app.dependency_overrides[get_now] = lambda: NOW
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuth:

    def test_missing_user_header(self, client):
        assert client.get("/members").status_code == 401

    def test_unknown_user(self, client):
        assert client.get("/members", headers={"X-User-Id": "ghost"}).status_code == 401


# =============================================================================
# Members and policies
# =============================================================================

class TestMembersApi:

    def test_advisor_sees_own_members(self, client):
        response = client.get("/members", headers=ADVISOR)
        assert response.status_code == 200
        body = response.json()
        assert [r["member"]["id"] for r in body["page"]["items"]] == ["m-1"]
        assert body["ai"]["state"] is None

    def test_ai_search_without_key_matches_nothing(self, client):
        body = client.get("/members", params={"q": "amit"}, headers=ADMIN).json()
        assert body["page"]["items"] == []
        assert body["ai"]["state"] == "fallback"
        assert body["ai"]["toasts"][0]["message"] == "Using fallback AI for member search."

    def test_member_detail_includes_lead_source_path(self, client):
        body = client.get("/members/m-1", headers=ADVISOR).json()
        assert body["lead_source_category"] == "Referral"
        assert [n["id"] for n in body["lead_source_path"]] == ["ls-root", "ls-mid", "ls-leaf"]

    def test_member_outside_scope_is_not_found(self, client):
        assert client.get("/members/m-2", headers=ADVISOR).status_code == 404

    def test_upsell_fallback(self, client):
        body = client.post("/members/m-1/upsell", headers=ADVISOR).json()
        assert body["opportunity"] is None
        assert body["ai"]["state"] == "fallback"


class TestPoliciesApi:

    def test_admin_policy_page(self, client):
        body = client.get("/policies", headers=ADMIN).json()
        assert [r["policy"]["id"] for r in body["page"]["items"]] == ["p-2", "p-1"]
        assert body["summary"] == {"total": 2, "overdue": 1, "due_in_7": 0, "due_in_30": 1}
        assert body["page"]["items"][0]["renewal_status"] == "Overdue"

    def test_advisor_filter(self, client):
        body = client.get("/policies", params={"advisors": ["adv-2"]}, headers=ADMIN).json()
        assert [r["policy"]["id"] for r in body["page"]["items"]] == ["p-2"]
        assert body["summary"] == {"total": 1, "overdue": 1, "due_in_7": 0, "due_in_30": 0}

    def test_renew(self, client, store):
        response = client.post("/policies/m-1/p-1/renew", headers=ADVISOR)
        assert response.status_code == 200
        assert response.json()["member"]["policies"][0]["renewal_date"] == "2027-10-29"
        assert store.get_member("m-1").member_type == "Gold"
        assert store.activity[0].policy_id == "p-1"

    def test_renew_unknown_policy(self, client):
        assert client.post("/policies/m-1/nope/renew", headers=ADVISOR).status_code == 404


class TestCommissionsApi:

    def test_admin_ledger(self, client):
        body = client.get("/commissions", headers=ADMIN).json()
        assert [r["policy_id"] for r in body["rows"]] == ["p-1", "p-2"]
        assert body["summary"] == {"paid": 500, "pending": 2000, "total_tracked": 2}

    def test_status_filter(self, client):
        body = client.get("/commissions", params={"status": "Paid"}, headers=ADMIN).json()
        assert [r["policy_id"] for r in body["rows"]] == ["p-2"]

    def test_advisors_cannot_see_commissions(self, client):
        assert client.get("/commissions", headers=ADVISOR).status_code == 403

    def test_mark_paid(self, client, store):
        response = client.put("/commissions/m-1/p-1", json={"status": "Paid"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["commission"]["status"] == "Paid"
        assert store.get_member("m-1").policies[0].commission.status == "Paid"

    def test_unknown_status_rejected(self, client):
        assert client.put("/commissions/m-1/p-1", json={"status": "Done"}, headers=ADMIN).status_code == 422


class TestLeadsApi:

    def test_admin_pipeline(self, client):
        body = client.get("/leads/pipeline", headers=ADMIN).json()
        assert [l["id"] for l in body["stages"]["Contacted"]] == ["l-1"]
        assert body["won"] == 1
        assert body["conversion_rate"] == 50
        assert body["pipeline_value"] == 30000
        assert body["value_bounds"] == [15000, 30000]

    def test_advisor_pipeline_is_scoped(self, client):
        body = client.get("/leads/pipeline", headers=ADVISOR).json()
        assert body["won"] == 0
        assert body["total"] == 1

    def test_branch_filter(self, client):
        body = client.get("/leads/pipeline", params={"branches": ["unassigned"]}, headers=ADMIN).json()
        assert body["total"] == 1
        assert all(column == [] for column in body["stages"].values())

    def test_move_lead(self, client, store):
        response = client.put("/leads/l-1/status", json={"status": "Meeting Scheduled"}, headers=ADVISOR)
        assert response.status_code == 200
        assert store.get_lead("l-1").status == "Meeting Scheduled"

    def test_move_someone_elses_lead(self, client):
        response = client.put("/leads/l-2/status", json={"status": "Lost"}, headers=ADVISOR)
        assert response.status_code == 403


# =============================================================================
# Tasks
# =============================================================================

class TestTasksApi:

    def test_advisor_task_list(self, client):
        body = client.get("/tasks", headers=ADVISOR).json()
        assert [r["task"]["id"] for r in body["items"]] == ["t-1"]

    def test_advisor_creates_task_for_self(self, client):
        draft = {"task_description": "Call Amit", "member_id": "m-1", "primary_contact_person": "adv-2"}
        response = client.post("/tasks", json=draft, headers=ADVISOR)
        assert response.status_code == 200
        assert response.json()["primary_contact_person"] == "adv-1"

    def test_validation_message(self, client):
        response = client.post("/tasks", json={"task_description": "Call"}, headers=ADVISOR)
        assert response.status_code == 400
        assert response.json()["detail"] == "Please select a customer or lead for the task."

    def test_bulk_is_admin_only(self, client):
        request = {"draft": {"task_description": "Review"}, "mode": "all_advisors"}
        assert client.post("/tasks/bulk", json=request, headers=ADVISOR).status_code == 403

    def test_bulk_assignment(self, client, store):
        request = {"draft": {"task_description": "Review"}, "mode": "all_advisors"}
        body = client.post("/tasks/bulk", json=request, headers=ADMIN).json()
        assert body["message"] == "Task successfully assigned to 2 advisor(s)."
        assert len(store.tasks) == 4

    def test_open_then_start(self, client):
        assert client.post("/tasks/t-1/open", headers=ADVISOR).json()["status_id"] == "ts-5"
        assert client.post("/tasks/t-1/start", headers=ADVISOR).json()["status_id"] == "ts-2"

    def test_invalid_transition(self, client):
        assert client.post("/tasks/t-1/complete", headers=ADVISOR).status_code == 400

    def test_other_advisors_task_is_hidden(self, client):
        assert client.post("/tasks/t-2/open", headers=ADVISOR).status_code == 404

    def test_update_rejects_member_and_lead(self, client):
        response = client.put("/tasks/t-1", json={"lead_id": "l-1"}, headers=ADMIN)
        assert response.status_code == 400

    def test_reassign_notifies_new_advisor(self, client):
        response = client.post("/tasks/t-1/reassign", json={"new_advisor_id": "adv-2"}, headers=ADVISOR)
        assert response.status_code == 200
        assert response.json()["primary_contact_person"] == "adv-2"

        notifications = client.get("/assistant/notifications", headers=OTHER_ADVISOR).json()
        assert [n["type"] for n in notifications] == ["Task Assignment"]
        assert notifications[0]["subject"]["name"] == "Amit Patel"

    def test_reassign_missing_task(self, client):
        response = client.post("/tasks/nope/reassign", json={"new_advisor_id": "adv-2"}, headers=ADMIN)
        assert response.status_code == 404
        assert response.json()["detail"] == "Task not found for reassignment."

    def test_reassign_options(self, client):
        body = client.get("/tasks/t-1/reassign-options", headers=ADMIN).json()
        assert [o["id"] for o in body] == ["adv-2"]

    def test_delete_is_admin_only(self, client, store):
        assert client.delete("/tasks/t-1", headers=ADVISOR).status_code == 403
        assert client.delete("/tasks/t-1", headers=ADMIN).status_code == 200
        assert [t.id for t in store.tasks] == ["t-2"]


# =============================================================================
# Notes
# =============================================================================

class TestNotesApi:

    def test_list_notes(self, client):
        body = client.get("/notes", headers=ADVISOR).json()
        assert [r["note"]["id"] for r in body["page"]["notes"]["items"]] == ["vn-1"]

    def test_ai_note_search_fallback_matches_nothing(self, client):
        body = client.get("/notes", params={"q": "health"}, headers=ADVISOR).json()
        assert body["page"]["notes"]["items"] == []
        assert body["ai"]["state"] == "fallback"

    def test_manual_note(self, client, store):
        request = {"owner_kind": "member", "owner_id": "m-1", "text": "Asked about riders", "summarize": False}
        response = client.post("/notes/manual", json=request, headers=ADVISOR)
        assert response.status_code == 200
        assert response.json()["note"]["tags"] == ["manual-note"]
        assert len(store.get_member("m-1").voice_notes) == 2

    def test_manual_note_for_unassigned_client(self, client):
        request = {"owner_kind": "member", "owner_id": "m-2", "text": "x", "summarize": False}
        assert client.post("/notes/manual", json=request, headers=ADVISOR).status_code == 403

    def test_dismiss_and_convert(self, client, store):
        item = {"owner_kind": "member", "owner_id": "m-1", "note_id": "vn-1", "item": "Send quote"}
        response = client.post("/notes/action-items/convert", json=item, headers=ADVISOR)
        assert response.status_code == 200
        assert response.json()["task"]["member_id"] == "m-1"
        assert store.get_member("m-1").voice_notes[0].action_items == []

        # Dismissing an item that is already gone is a no-op
        response = client.post("/notes/action-items/dismiss", json=item, headers=ADVISOR)
        assert response.json()["message"] == "Action item dismissed."

    def test_voice_upload_needs_redis(self, client):
        response = client.post(
            "/notes/voice",
            data={"owner_kind": "member", "owner_id": "m-1"},
            files={"file": ("note.webm", b"audio", "audio/webm")},
            headers=ADVISOR,
        )
        assert response.status_code == 503

    def _finished_note(self, redis, note_id):
        note = VoiceNote(id=note_id, recording_date=NOW.isoformat(), summary="Discussed top-up cover")
        redis.data[voice_note_key(note_id, "result")] = note.model_dump_json()
        redis.data[voice_note_key(note_id, "status")] = "complete"

    def test_voice_status_attaches_finished_note(self, client, store):
        redis = app.state.redis_pool = FakeRedis()
        self._finished_note(redis, "vn-new")
        redis.data[voice_note_key("vn-new", "owner")] = json.dumps({"kind": "member", "id": "m-1"})

        for _ in range(2):
            body = client.get("/notes/voice/status", params={"note_id": "vn-new"}, headers=ADVISOR).json()
            assert body["status"] == "complete"
        assert [n.id for n in store.get_member("m-1").voice_notes] == ["vn-1", "vn-new"]

    def test_voice_status_without_owner_record_fails_cleanly(self, client):
        redis = app.state.redis_pool = FakeRedis()
        self._finished_note(redis, "vn-lost")

        response = client.get("/notes/voice/status", params={"note_id": "vn-lost"}, headers=ADVISOR)
        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["error"]

    def test_note_clients(self, client):
        body = client.get("/notes/clients", headers=ADVISOR).json()
        assert [(c["kind"], c["id"]) for c in body] == [("member", "m-1"), ("lead", "l-1")]


# =============================================================================
# Analytics, location and assistant
# =============================================================================

class TestAnalyticsApi:

    def test_report(self, client):
        body = client.get("/analytics", headers=ADMIN).json()
        assert body["total_premium"] == 25000
        assert len(body["renewal_histogram"]) == 12

    def test_forecast_fallback_returns_history(self, client):
        body = client.post("/analytics/forecast", headers=ADMIN).json()
        assert len(body["series"]) == 6
        assert body["series"][-1]["customers"] == 2
        assert body["ai"]["state"] == "fallback"


class TestLocationApi:

    def test_default_origin_warns(self, client):
        body = client.get("/location/customers", headers=ADMIN).json()
        assert body["warning"] == DEFAULT_LOCATION_WARNING
        assert set(body["by_city"]) == {"Mumbai", "Pune"}

    def test_nearest_first(self, client):
        body = client.get("/location/customers", params={"lat": 19.07, "lng": 72.87}, headers=ADMIN).json()
        assert body["warning"] is None
        assert [c["member_id"] for c in body["customers"]] == ["m-1", "m-2"]

    def test_route_rejects_unknown_stop(self, client):
        request = {"member_ids": ["m-1", "m-2"]}
        assert client.post("/location/route", json=request, headers=ADVISOR).status_code == 400

    def test_route_fallback_orders_by_proximity(self, client):
        request = {"origin": {"lat": 18.52, "lng": 73.85}, "member_ids": ["m-1", "m-2"]}
        body = client.post("/location/route", json=request, headers=ADMIN).json()
        assert body["member_ids"] == ["m-2", "m-1"]
        assert body["ai"]["state"] == "fallback"

    def test_enrich_sets_digipin(self, client, store):
        body = client.post("/location/members/m-1/enrich", headers=ADVISOR).json()
        assert body["member"]["digipin"]
        assert store.get_member("m-1").digipin_details.landmarks


class TestAssistantApi:

    def test_chat_fallback(self, client):
        body = client.post("/assistant/chat", json={"message": "Who renews soon?"}, headers=ADVISOR).json()
        assert body["reply"] == CHAT_FALLBACK
        assert body["ai"]["state"] == "fallback"

    def test_focus_fallback(self, client):
        body = client.get("/assistant/focus", headers=ADVISOR).json()
        assert body["items"] == []
        assert body["ai"]["toasts"][0]["kind"] == "error"
