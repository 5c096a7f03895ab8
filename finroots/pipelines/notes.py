import logging
import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

from ..models.schemas import Lead, Member, NoteSummary, Task, User, VoiceNote
from ..utils.dates import end_of_day, parse_timestamp, start_of_day
from .errors import CrmPermissionError, CrmValidationError
from .paging import DEFAULT_PAGE_SIZE, Page, paginate, stable_sort
from .tasks import TaskDraft, create_task
from .visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

NoteOwner = Union[Member, Lead]
OwnerKind = Literal["member", "lead"]

CLOSED_LEAD_STATUSES = ("Won", "Lost")


class NoteRow(BaseModel):
    note: VoiceNote
    owner_kind: OwnerKind
    owner_id: str
    owner_name: str
    owner_advisors: List[str] = Field(default_factory=list)
    highlights: List[str] = Field(default_factory=list)


class NoteGroup(BaseModel):
    owner_kind: OwnerKind
    owner_id: str
    owner_name: str
    notes: List[NoteRow]


class NotesQuery(BaseModel):
    search_mode: Literal["ai", "advanced"] = "ai"
    keyword: str = ""
    start: Optional[date] = None
    end: Optional[date] = None
    advisor_id: str = "all"
    group_by_client: bool = False
    page: int = 1


class NotesPage(BaseModel):
    grouped: bool
    notes: Optional[Page[NoteRow]] = None
    groups: Optional[Page[NoteGroup]] = None


class NoteClient(BaseModel):
    id: str
    kind: OwnerKind
    name: str


def owner_kind(owner: NoteOwner) -> OwnerKind:
    return "member" if isinstance(owner, Member) else "lead"


def flatten_notes(
    members: Iterable[Member],
    leads: Iterable[Lead],
    visibility: VisibilityPolicy,
) -> List[NoteRow]:
    rows = []
    for member in members:
        if not visibility.sees_member_notes(member):
            continue
        for note in member.voice_notes:
            rows.append(NoteRow(
                note=note,
                owner_kind="member",
                owner_id=member.id,
                owner_name=member.name,
                owner_advisors=list(member.assigned_to),
            ))
    for lead in leads:
        if not visibility.sees_lead_notes(lead):
            continue
        for note in lead.voice_notes:
            rows.append(NoteRow(
                note=note,
                owner_kind="lead",
                owner_id=lead.id,
                owner_name=lead.name,
                owner_advisors=[lead.assigned_to] if lead.assigned_to else [],
            ))
    return rows


def filter_notes(
    rows: Iterable[NoteRow],
    query: NotesQuery,
    ai_matches: Optional[Dict[str, List[str]]] = None,
) -> List[NoteRow]:
    """
    Filter by AI matches or by the advanced keyword/date filters.

    ``ai_matches`` maps note id to matched text and is None when no AI search
    was performed, in which case every note passes without highlights.
    """
    rows = list(rows)
    if query.search_mode == "ai":
        if ai_matches is None:
            return rows
        return [
            row.model_copy(update={"highlights": list(ai_matches[row.note.id])})
            for row in rows if row.note.id in ai_matches
        ]

    keyword = query.keyword.strip().lower()
    result = []
    for row in rows:
        if keyword and keyword not in row.note.summary.lower() and keyword not in row.note.transcript_snippet.lower():
            continue
        if query.start or query.end:
            recorded = parse_timestamp(row.note.recording_date)
            if recorded is None:
                continue
            if query.start and recorded < start_of_day(query.start):
                continue
            if query.end and recorded > end_of_day(query.end):
                continue
        result.append(row.model_copy(update={"highlights": [query.keyword.strip()] if keyword else []}))
    return result


def notes_pipeline(
    members: Iterable[Member],
    leads: Iterable[Lead],
    visibility: VisibilityPolicy,
    query: Optional[NotesQuery] = None,
    ai_matches: Optional[Dict[str, List[str]]] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> NotesPage:
    query = query or NotesQuery()
    rows = filter_notes(flatten_notes(members, leads, visibility), query, ai_matches)

    # Assignment filter is an admin tool; advisors are already scoped
    if visibility.is_admin and query.advisor_id and query.advisor_id != "all":
        rows = [r for r in rows if query.advisor_id in r.owner_advisors]

    rows = stable_sort(rows, lambda r: parse_timestamp(r.note.recording_date), descending=True)

    if not query.group_by_client:
        return NotesPage(grouped=False, notes=paginate(rows, query.page, page_size))

    groups: Dict[Tuple[str, str], NoteGroup] = {}
    for row in rows:
        key = (row.owner_kind, row.owner_id)
        if key not in groups:
            groups[key] = NoteGroup(
                owner_kind=row.owner_kind,
                owner_id=row.owner_id,
                owner_name=row.owner_name,
                notes=[],
            )
        groups[key].notes.append(row)
    return NotesPage(grouped=True, groups=paginate(list(groups.values()), query.page, page_size))


# --- Mutations ---

def dismiss_action_item(owner: NoteOwner, note_id: str, item: str) -> NoteOwner:
    """Remove an action item from a note. Absent notes or items are a no-op."""
    changed = False
    notes = []
    for note in owner.voice_notes:
        if note.id == note_id and item in note.action_items:
            note = note.model_copy(update={"action_items": [a for a in note.action_items if a != item]})
            changed = True
        notes.append(note)
    if not changed:
        return owner
    return owner.model_copy(update={"voice_notes": notes})


def convert_action_item(
    owner: NoteOwner,
    note_id: str,
    item: str,
    user: User,
    now: datetime,
    due: Optional[str] = None,
) -> Tuple[NoteOwner, Task]:
    """Turn an action item into a task for the note's client, then drop it from the note."""
    draft = TaskDraft(
        task_description=item,
        expected_completion_date_time=due or now.isoformat(),
        member_id=owner.id if isinstance(owner, Member) else None,
        lead_id=owner.id if isinstance(owner, Lead) else None,
        task_type="Manual",
        triggering_point="Manual",
    )
    task = create_task(draft, user, now)
    return dismiss_action_item(owner, note_id, item), task


def add_voice_note(owner: NoteOwner, note: VoiceNote) -> NoteOwner:
    if any(existing.id == note.id for existing in owner.voice_notes):
        return owner
    return owner.model_copy(update={"voice_notes": owner.voice_notes + [note]})


def add_manual_note(
    owner: NoteOwner,
    text: str,
    visibility: VisibilityPolicy,
    now: datetime,
    summary: Optional[NoteSummary] = None,
) -> Tuple[NoteOwner, VoiceNote]:
    user = visibility.user
    if not text.strip():
        raise CrmValidationError("Note text is required.")
    if not visibility.can_write_notes_for(owner):
        raise CrmPermissionError("You are not assigned to this client.")

    note = VoiceNote(
        id=f"vn-{uuid.uuid4().hex[:12]}",
        filename="Manual Note",
        client=owner.name,
        recording_date=now.isoformat(),
        detected_language=summary.detected_language if summary and summary.detected_language else "Manual",
        summary=summary.summary if summary else text,
        tags=summary.tags if summary and summary.tags else ["manual-note"],
        status=summary.status if summary else "Completed",
        transcript_snippet=text,
        action_items=summary.action_items if summary else [],
        created_by=user.id,
    )
    logger.info(f"Manual note {note.id} added to {owner_kind(owner)} {owner.id} by {user.id}")
    return add_voice_note(owner, note), note


def note_clients(
    members: Iterable[Member],
    leads: Iterable[Lead],
    visibility: VisibilityPolicy,
) -> List[NoteClient]:
    """Clients the current user may attach a new note to."""
    clients = [
        NoteClient(id=m.id, kind="member", name=m.name)
        for m in members
        if m.active and visibility.sees_member_notes(m)
    ]
    clients.extend(
        NoteClient(id=l.id, kind="lead", name=l.name)
        for l in leads
        if l.status not in CLOSED_LEAD_STATUSES and visibility.sees_lead_notes(l)
    )
    return clients
