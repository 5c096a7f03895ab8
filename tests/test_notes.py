from datetime import date

import pytest

from finroots.models.schemas import Lead, NoteSummary
from finroots.pipelines.errors import CrmPermissionError, CrmValidationError
from finroots.pipelines.notes import (
    NotesQuery,
    add_manual_note,
    add_voice_note,
    convert_action_item,
    dismiss_action_item,
    flatten_notes,
    note_clients,
    notes_pipeline,
)
from finroots.pipelines.visibility import VisibilityPolicy
from tests.conftest import NOW, make_member, make_note


def _world():
    members = [
        make_member("m1", ["adv-1"], name="Amit", created_by="adv-2", voice_notes=[
            make_note("n1", "2026-10-01T10:00:00", summary="Discussed health cover", action_items=["Send quote", "Call back"]),
            make_note("n2", "2026-10-05T10:00:00", summary="Renewal reminder", transcript_snippet="premium increase"),
        ]),
        make_member("m2", ["adv-2"], name="Sneha", created_by="adv-1", voice_notes=[
            make_note("n3", "2026-10-03T10:00:00", summary="Motor claim"),
        ]),
    ]
    leads = [
        Lead(id="l1", name="Rohan", assigned_to="adv-1", voice_notes=[make_note("n4", "2026-09-01T10:00:00")]),
        Lead(id="l2", name="Meera", assigned_to="adv-1", status="Won"),
    ]
    return members, leads


class TestNotesListing:

    def test_advisor_sees_notes_of_assigned_clients_only(self, advisor):
        members, leads = _world()
        rows = flatten_notes(members, leads, VisibilityPolicy(advisor))
        # m2 was created by adv-1 but is assigned elsewhere
        assert {r.note.id for r in rows} == {"n1", "n2", "n4"}

    def test_newest_first(self, admin):
        members, leads = _world()
        page = notes_pipeline(members, leads, VisibilityPolicy(admin))
        assert [r.note.id for r in page.notes.items] == ["n2", "n3", "n1", "n4"]

    def test_ai_matches_filter_and_highlight(self, admin):
        members, leads = _world()
        page = notes_pipeline(members, leads, VisibilityPolicy(admin), ai_matches={"n3": ["claim"]})
        [row] = page.notes.items
        assert row.note.id == "n3"
        assert row.highlights == ["claim"]

    def test_empty_ai_matches_return_nothing(self, admin):
        members, leads = _world()
        assert notes_pipeline(members, leads, VisibilityPolicy(admin), ai_matches={}).notes.items == []

    def test_advanced_keyword_searches_transcript(self, admin):
        members, leads = _world()
        query = NotesQuery(search_mode="advanced", keyword="PREMIUM")
        page = notes_pipeline(members, leads, VisibilityPolicy(admin), query)
        assert [r.note.id for r in page.notes.items] == ["n2"]

    def test_date_range_is_inclusive_of_whole_days(self, admin):
        members, leads = _world()
        query = NotesQuery(search_mode="advanced", start=date(2026, 10, 3), end=date(2026, 10, 5))
        page = notes_pipeline(members, leads, VisibilityPolicy(admin), query)
        assert [r.note.id for r in page.notes.items] == ["n2", "n3"]

    def test_admin_advisor_filter(self, admin):
        members, leads = _world()
        page = notes_pipeline(members, leads, VisibilityPolicy(admin), NotesQuery(advisor_id="adv-2"))
        assert [r.note.id for r in page.notes.items] == ["n3"]

    def test_group_by_client(self, admin):
        members, leads = _world()
        page = notes_pipeline(members, leads, VisibilityPolicy(admin), NotesQuery(group_by_client=True))
        assert page.grouped
        groups = page.groups.items
        assert [(g.owner_id, len(g.notes)) for g in groups] == [("m1", 2), ("m2", 1), ("l1", 1)]

    def test_note_clients_skip_closed_leads(self, advisor):
        members, leads = _world()
        clients = note_clients(members, leads, VisibilityPolicy(advisor))
        assert [(c.kind, c.id) for c in clients] == [("member", "m1"), ("lead", "l1")]


class TestNoteMutations:

    def test_dismiss_removes_item(self):
        member = _world()[0][0]
        updated = dismiss_action_item(member, "n1", "Send quote")
        assert updated.voice_notes[0].action_items == ["Call back"]
        assert member.voice_notes[0].action_items == ["Send quote", "Call back"]

    def test_dismiss_is_idempotent(self):
        member = _world()[0][0]
        once = dismiss_action_item(member, "n1", "Send quote")
        assert dismiss_action_item(once, "n1", "Send quote") is once
        assert dismiss_action_item(member, "missing", "Send quote") is member

    def test_convert_creates_task_for_client(self, advisor):
        member = _world()[0][0]
        updated, task = convert_action_item(member, "n1", "Send quote", advisor, NOW, due="2026-10-25T10:00:00")
        assert task.member_id == "m1"
        assert task.lead_id is None
        assert task.task_description == "Send quote"
        assert task.primary_contact_person == "adv-1"
        assert task.expected_completion_date_time == "2026-10-25T10:00:00"
        assert "Send quote" not in updated.voice_notes[0].action_items

    def test_convert_for_lead(self, advisor):
        lead = Lead(id="l1", name="Rohan", assigned_to="adv-1", voice_notes=[make_note("n", action_items=["Visit"])])
        _, task = convert_action_item(lead, "n", "Visit", advisor, NOW)
        assert task.lead_id == "l1"
        assert task.member_id is None

    def test_add_voice_note_is_idempotent(self):
        member = make_member("m1")
        note = make_note("n1")
        once = add_voice_note(member, note)
        assert add_voice_note(once, note) is once
        assert len(once.voice_notes) == 1

    def test_manual_note_without_summary(self, advisor):
        member = make_member("m1", ["adv-1"], name="Amit")
        updated, note = add_manual_note(member, "Client asked about riders", VisibilityPolicy(advisor), NOW)
        assert note.summary == "Client asked about riders"
        assert note.tags == ["manual-note"]
        assert note.detected_language == "Manual"
        assert note.created_by == "adv-1"
        assert updated.voice_notes == [note]

    def test_manual_note_with_summary(self, advisor):
        member = make_member("m1", ["adv-1"])
        summary = NoteSummary(summary="Short", tags=["riders", "manual-note"], action_items=["Send brochure"])
        _, note = add_manual_note(member, "long text", VisibilityPolicy(advisor), NOW, summary)
        assert note.summary == "Short"
        assert note.action_items == ["Send brochure"]
        assert note.transcript_snippet == "long text"

    def test_manual_note_requires_text(self, advisor):
        with pytest.raises(CrmValidationError):
            add_manual_note(make_member("m1", ["adv-1"]), "   ", VisibilityPolicy(advisor), NOW)

    def test_manual_note_requires_assignment(self, advisor):
        with pytest.raises(CrmPermissionError):
            add_manual_note(make_member("m1", ["adv-2"], created_by="adv-1"), "text", VisibilityPolicy(advisor), NOW)
