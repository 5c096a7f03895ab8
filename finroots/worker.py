import logging
from typing import Any, Dict, List, Optional

from .agents.notes_agent import NotesAgent
from .models.schemas import VoiceNote
from .services.storage import StorageService
from .settings import get_settings
from .utils.cleanup import audio_workspace

logger = logging.getLogger(__name__)

VOICE_NOTE_QUEUE = "arq:queue:voice-notes"


def voice_note_key(note_id: str, suffix: str) -> str:
    return f"voice_note:{note_id}:{suffix}"


async def startup(ctx: Dict[str, Any]) -> None:
    settings = get_settings()
    ctx["storage"] = StorageService(settings)
    ctx["notes_agent"] = NotesAgent(settings.gemini_api_key, settings.gemini_model)


async def process_voice_note_task(
    ctx: Dict[str, Any],
    note_id: str,
    owner_kind: str,
    owner_id: str,
    owner_name: str,
    audio_location: str,
    filename: str,
    mime_type: str,
    recorded_at: str,
    recorded_by: str,
    previous_summaries: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Transcribe and summarise an uploaded recording.

    The finished VoiceNote is written to Redis for the API to attach to its
    owner; failures are written to the error key and re-raised for arq.
    """
    redis = ctx["redis"]
    storage: StorageService = ctx["storage"]
    agent: NotesAgent = ctx["notes_agent"]
    logger.info(f"Processing voice note {note_id} for {owner_kind} {owner_id}")

    try:
        await redis.set(voice_note_key(note_id, "status"), "processing")

        with audio_workspace() as workdir:
            local_path = storage.fetch_audio(audio_location, workdir)
            transcribed = await agent.transcribe_audio(local_path, mime_type)

        transcript = transcribed.value.transcript if transcribed.value else ""
        summarized = await agent.summarize_transcript(transcript, previous_summaries)
        summary = summarized.value

        note = VoiceNote(
            id=note_id,
            filename=filename,
            client=owner_name,
            recording_date=recorded_at,
            detected_language=(summary.detected_language if summary else "") or transcribed.value.detected_language,
            summary=summary.summary if summary else "Summary unavailable.",
            tags=summary.tags if summary else [],
            status="Completed" if summarized.kind == "ok" else "Fallback",
            transcript_snippet=transcript,
            audio_url=audio_location,
            action_items=summary.action_items if summary else [],
            created_by=recorded_by,
        )
        await redis.set(voice_note_key(note_id, "result"), note.model_dump_json())
        await redis.set(voice_note_key(note_id, "status"), "complete")
        logger.info(f"Voice note {note_id} ready ({note.status})")
        return note.model_dump(mode="json")
    except Exception as e:
        logger.error(f"Error processing voice note {note_id}: {e}")
        try:
            await redis.set(voice_note_key(note_id, "error"), str(e))
            await redis.set(voice_note_key(note_id, "status"), "failed")
        except Exception as redis_err:
            logger.error(f"Failed to store error in Redis: {redis_err}")
        raise e


class WorkerSettings:
    functions = [process_voice_note_task]
    on_startup = startup
    redis_settings = get_settings().redis_settings
    queue_name = VOICE_NOTE_QUEUE
