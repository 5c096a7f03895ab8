import asyncio
import json
import logging
import os
from typing import List, Optional

from google.genai import types
from pydantic import BaseModel

from ..models.schemas import NoteSummary
from .gateway import AiResult, GeminiAgent, Notifier

logger = logging.getLogger(__name__)


class Transcript(BaseModel):
    transcript: str
    detected_language: str = ""


class NotesAgent(GeminiAgent):
    """
    Voice and manual note processing for advisors.

    Audio is transcribed through the Gemini File API, then summarised into a
    ``NoteSummary`` with tags and follow-up action items.
    """

    async def _wait_for_file_active(self, file_name: str, max_attempts: int = 60, delay: float = 0.5) -> bool:
        for attempt in range(max_attempts):
            file_info = await self.client.aio.files.get(name=file_name)
            if file_info.state == "ACTIVE":
                return True
            if file_info.state == "FAILED":
                logger.error(f"Gemini could not process uploaded file {file_name}")
                return False
            logger.debug(f"File {file_name} state: {file_info.state} (attempt {attempt + 1}/{max_attempts})")
            await asyncio.sleep(delay)
        logger.error(f"Timeout waiting for file {file_name} to become ACTIVE")
        return False

    async def transcribe_audio(
        self,
        file_path: str,
        mime_type: str = "audio/webm",
        notify: Optional[Notifier] = None,
    ) -> AiResult[Transcript]:
        """
        Transcribe a local audio file.

        Args:
            file_path: Path to the recording on local disk
            mime_type: MIME type reported by the uploader

        Returns:
            The transcript, or an empty transcript as the fallback
        """
        async def call() -> Transcript:
            if not os.path.exists(file_path):
                raise FileNotFoundError(f"Audio file not found: {file_path}")

            logger.info(f"Uploading audio to Gemini: {file_path} ({os.path.getsize(file_path)} bytes)")
            uploaded = await self.client.aio.files.upload(
                file=file_path,
                config=types.UploadFileConfig(mime_type=mime_type),
            )
            try:
                if not await self._wait_for_file_active(uploaded.name):
                    raise RuntimeError(f"Uploaded file {uploaded.name} never became ACTIVE")

                prompt = (
                    "Transcribe this voice note recorded by an insurance advisor about a client. "
                    "If it is in Hindi or another Indian language, transcribe in Latin script (Hinglish). "
                    "Return JSON with \"transcript\" (string) and \"detected_language\" (language name)."
                )
                data = await self._generate_json(
                    [
                        types.Content(
                            parts=[
                                types.Part(file_data=types.FileData(file_uri=uploaded.uri, mime_type=mime_type)),
                                types.Part(text=prompt),
                            ]
                        )
                    ],
                    temperature=0,
                    response_schema=Transcript,
                )
                return Transcript.model_validate(data)
            finally:
                try:
                    await self.client.aio.files.delete(name=uploaded.name)
                except Exception as cleanup_error:
                    logger.warning(f"Failed to delete uploaded file {uploaded.name}: {cleanup_error}")

        return await self._guarded("transcription", call, fallback=Transcript(transcript=""), notify=notify)

    async def summarize_transcript(
        self,
        transcript: str,
        previous_summaries: Optional[List[str]] = None,
        notify: Optional[Notifier] = None,
    ) -> AiResult[Optional[NoteSummary]]:
        """Summarise a transcript, using earlier notes about the same client as context."""
        if not transcript.strip():
            return AiResult.fallback(None)

        async def call() -> NoteSummary:
            history = "\n".join(f"- {s}" for s in (previous_summaries or [])) or "None"
            prompt = f"""
You are an assistant for an insurance advisor. Summarise the voice note transcript below.

Return JSON with:
- "summary": two or three sentences for the advisor
- "detected_language": the language spoken
- "tags": up to five short topic tags (e.g. "health-insurance", "renewal")
- "action_items": concrete follow-ups the advisor must do, each a short imperative sentence

Earlier notes about this client:
{history}

Transcript:
{transcript}
"""
            data = await self._generate_json(prompt, temperature=0.2, response_schema=NoteSummary)
            return NoteSummary.model_validate(data)

        return await self._guarded("note summary", call, fallback=None, notify=notify)

    async def summarize_manual_text(self, text: str, notify: Optional[Notifier] = None) -> AiResult[NoteSummary]:
        fallback = NoteSummary(
            summary=text,
            detected_language="Manual",
            tags=["manual-note"],
            action_items=[],
            status="Fallback",
        )

        async def call() -> NoteSummary:
            prompt = f"""
An insurance advisor typed the note below after talking to a client.
Return JSON with "summary" (one or two sentences), "detected_language", "tags" (up to five)
and "action_items" (follow-ups for the advisor, may be empty).

Note:
{json.dumps(text)}
"""
            data = await self._generate_json(prompt, temperature=0.2, response_schema=NoteSummary)
            summary = NoteSummary.model_validate(data)
            if "manual-note" not in summary.tags:
                summary.tags.append("manual-note")
            return summary

        return await self._guarded("manual note summary", call, fallback=fallback, notify=notify)
