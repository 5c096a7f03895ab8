import json
import logging
import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from arq.connections import ArqRedis
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel

from ..agents.gateway import run_once
from ..agents.registry import Agents
from ..models.schemas import Task, VoiceNote
from ..pipelines.errors import CrmError, CrmPermissionError
from ..pipelines.notes import (
    NoteClient,
    NotesPage,
    NotesQuery,
    add_manual_note,
    add_voice_note,
    convert_action_item,
    dismiss_action_item,
    flatten_notes,
    note_clients,
    notes_pipeline,
)
from ..pipelines.visibility import VisibilityPolicy
from ..services.notifications import ToastCollector
from ..services.storage import StorageService
from ..services.store import CrmStore
from ..settings import Settings
from ..worker import VOICE_NOTE_QUEUE, voice_note_key
from .deps import (
    GatewayOutcome,
    get_agents,
    get_app_settings,
    get_now,
    get_store,
    get_toasts,
    get_visibility,
    http_error,
    outcome,
)

logger = logging.getLogger(__name__)

OwnerKind = Literal["member", "lead"]


class NotesListResponse(BaseModel):
    page: NotesPage
    ai: GatewayOutcome


class ManualNoteRequest(BaseModel):
    owner_kind: OwnerKind
    owner_id: str
    text: str
    summarize: bool = True


class ManualNoteResponse(BaseModel):
    note: VoiceNote
    ai: GatewayOutcome


class ActionItemRequest(BaseModel):
    owner_kind: OwnerKind
    owner_id: str
    note_id: str
    item: str
    due: Optional[str] = None


class ActionItemResponse(BaseModel):
    status: str
    message: str
    task: Optional[Task] = None


class VoiceUploadResponse(BaseModel):
    note_id: str
    job_id: Optional[str] = None
    status: str


class VoiceStatusResponse(BaseModel):
    note_id: str
    status: str  # queued, processing, complete, failed
    note: Optional[VoiceNote] = None
    error: Optional[str] = None


router = APIRouter(prefix="/notes", tags=["notes"])


def writable_owner(store: CrmStore, visibility: VisibilityPolicy, owner_kind: str, owner_id: str):
    owner = store.get_owner(owner_kind, owner_id)
    if not visibility.can_write_notes_for(owner):
        raise CrmPermissionError("You are not assigned to this client.")
    return owner


def _decode(value) -> Optional[str]:
    if value is None:
        return None
    return value.decode("utf-8") if isinstance(value, bytes) else value


@router.get("", response_model=NotesListResponse)
async def list_notes(
    q: Optional[str] = Query(None, description="Semantic search (ai mode)"),
    search_mode: Literal["ai", "advanced"] = Query("ai"),
    keyword: str = Query(""),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    advisor_id: str = Query("all"),
    group_by_client: bool = Query(False),
    page: int = Query(1, ge=1),
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    settings: Settings = Depends(get_app_settings),
) -> NotesListResponse:
    try:
        query = NotesQuery(
            search_mode=search_mode,
            keyword=keyword,
            start=start,
            end=end,
            advisor_id=advisor_id,
            group_by_client=group_by_client,
            page=page,
        )
        result = None
        matches = None
        if search_mode == "ai" and q and q.strip():
            visible = flatten_notes(store.members, store.leads, visibility)
            result = await run_once(
                agents.in_flight,
                (visibility.user.id, "note-search"),
                lambda: agents.search.search_voice_notes(q, visible, notify=toasts.add),
            )
            matches = None if result.is_pending else result.value

        notes_page = notes_pipeline(
            store.members,
            store.leads,
            visibility,
            query,
            ai_matches=matches,
            page_size=settings.page_size,
        )
        return NotesListResponse(page=notes_page, ai=outcome(result, toasts))
    except Exception as e:
        logger.error(f"Error listing notes: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/clients", response_model=List[NoteClient])
async def list_note_clients(
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> List[NoteClient]:
    return note_clients(store.members, store.leads, visibility)


@router.post("/manual", response_model=ManualNoteResponse)
async def create_manual_note(
    request: ManualNoteRequest,
    store: CrmStore = Depends(get_store),
    agents: Agents = Depends(get_agents),
    visibility: VisibilityPolicy = Depends(get_visibility),
    toasts: ToastCollector = Depends(get_toasts),
    now: datetime = Depends(get_now),
) -> ManualNoteResponse:
    try:
        owner = writable_owner(store, visibility, request.owner_kind, request.owner_id)
        result = None
        summary = None
        if request.summarize and request.text.strip():
            result = await agents.notes.summarize_manual_text(request.text, notify=toasts.add)
            summary = result.value
        updated, note = add_manual_note(owner, request.text, visibility, now, summary)
        store.save_owner(updated)
        return ManualNoteResponse(note=note, ai=outcome(result, toasts))
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/action-items/dismiss", response_model=ActionItemResponse)
async def dismiss(
    request: ActionItemRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> ActionItemResponse:
    try:
        owner = writable_owner(store, visibility, request.owner_kind, request.owner_id)
        updated = dismiss_action_item(owner, request.note_id, request.item)
        if updated is not owner:
            store.save_owner(updated)
        return ActionItemResponse(status="dismissed", message="Action item dismissed.")
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/action-items/convert", response_model=ActionItemResponse)
async def convert(
    request: ActionItemRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> ActionItemResponse:
    try:
        owner = writable_owner(store, visibility, request.owner_kind, request.owner_id)
        updated, task = convert_action_item(owner, request.note_id, request.item, visibility.user, now, request.due)
        store.add_tasks([task])
        store.save_owner(updated)
        return ActionItemResponse(status="converted", message="Task created from action item.", task=task)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/voice", response_model=VoiceUploadResponse)
async def upload_voice_note(
    request: Request,
    owner_kind: OwnerKind = Form(...),
    owner_id: str = Form(...),
    file: UploadFile = File(...),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
    settings: Settings = Depends(get_app_settings),
) -> VoiceUploadResponse:
    try:
        owner = writable_owner(store, visibility, owner_kind, owner_id)
        redis: Optional[ArqRedis] = request.app.state.redis_pool
        if redis is None:
            raise HTTPException(status_code=503, detail="Voice note processing is unavailable")

        note_id = f"vn-{uuid.uuid4().hex[:12]}"
        filename = file.filename or "recording.webm"
        location = StorageService(settings).save_audio(await file.read(), owner_kind, owner_id, note_id, filename)

        await redis.set(voice_note_key(note_id, "owner"), json.dumps({"kind": owner_kind, "id": owner_id}))
        await redis.set(voice_note_key(note_id, "status"), "queued")
        job = await redis.enqueue_job(
            "process_voice_note_task",
            note_id,
            owner_kind,
            owner_id,
            owner.name,
            location,
            filename,
            file.content_type or "audio/webm",
            now.isoformat(),
            visibility.user.id,
            [n.summary for n in owner.voice_notes if n.summary],
            _job_id=f"voice-note-{note_id}",
            _queue_name=VOICE_NOTE_QUEUE,
        )
        return VoiceUploadResponse(note_id=note_id, job_id=job.job_id if job else None, status="queued")
    except HTTPException:
        raise
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/voice/status", response_model=VoiceStatusResponse)
async def voice_note_status(
    request: Request,
    note_id: str = Query(...),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> VoiceStatusResponse:
    try:
        redis: Optional[ArqRedis] = request.app.state.redis_pool
        if redis is None:
            raise HTTPException(status_code=503, detail="Voice note processing is unavailable")

        result = _decode(await redis.get(voice_note_key(note_id, "result")))
        if result:
            note = VoiceNote.model_validate_json(result)
            owner_raw = _decode(await redis.get(voice_note_key(note_id, "owner")))
            if owner_raw is None:
                logger.warning(f"Voice note {note_id} finished but its owner record has expired")
                return VoiceStatusResponse(
                    note_id=note_id,
                    status="failed",
                    error="The client this note belongs to is no longer known. Please upload it again.",
                )
            owner_ref = json.loads(owner_raw)
            owner = writable_owner(store, visibility, owner_ref["kind"], owner_ref["id"])
            # Attaching is idempotent so repeated polls are safe
            updated = add_voice_note(owner, note)
            if updated is not owner:
                store.save_owner(updated)
            return VoiceStatusResponse(note_id=note_id, status="complete", note=note)

        error = _decode(await redis.get(voice_note_key(note_id, "error")))
        if error:
            return VoiceStatusResponse(note_id=note_id, status="failed", error=error)

        status = _decode(await redis.get(voice_note_key(note_id, "status"))) or "queued"
        return VoiceStatusResponse(note_id=note_id, status=status)
    except HTTPException:
        raise
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
