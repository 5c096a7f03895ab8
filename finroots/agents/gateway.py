import json
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Hashable, Literal, Optional, Set, TypeVar

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (message, kind) where kind is "success" or "error"
Notifier = Callable[[str, str], None]


@dataclass(frozen=True)
class AiResult(Generic[T]):
    """Outcome of a gateway call: a real answer, a fallback, or still running."""
    kind: Literal["ok", "fallback", "pending"]
    value: Optional[T] = None

    @classmethod
    def ok(cls, value: T) -> "AiResult[T]":
        return cls(kind="ok", value=value)

    @classmethod
    def fallback(cls, value: T) -> "AiResult[T]":
        return cls(kind="fallback", value=value)

    @classmethod
    def pending(cls) -> "AiResult[T]":
        return cls(kind="pending")

    @property
    def is_pending(self) -> bool:
        return self.kind == "pending"


class InFlightRegistry:
    """Tracks outstanding gateway calls so duplicate submissions can be refused."""

    def __init__(self):
        self._active: Set[Hashable] = set()

    def is_active(self, key: Hashable) -> bool:
        return key in self._active

    @asynccontextmanager
    async def claim(self, key: Hashable) -> AsyncIterator[bool]:
        if key in self._active:
            yield False
            return
        self._active.add(key)
        try:
            yield True
        finally:
            self._active.discard(key)


async def run_once(
    registry: InFlightRegistry,
    key: Hashable,
    call: Callable[[], Awaitable[AiResult[T]]],
) -> AiResult[T]:
    async with registry.claim(key) as claimed:
        if not claimed:
            logger.info(f"Gateway call {key} already in flight")
            return AiResult.pending()
        return await call()


def parse_json(content: str) -> Any:
    """Decode a model reply, tolerating prose or code fences around the JSON."""
    if not content:
        raise ValueError("Empty response from Gemini")
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r"(\[.*\]|\{.*\})", content, re.DOTALL)
        if not match:
            raise ValueError("Gemini response did not contain JSON")
        return json.loads(match.group(0))


class GeminiAgent:
    """
    Base for Gemini-backed capabilities.

    Subclasses wrap each call in ``_guarded`` so a missing key, a failed
    request or an unusable reply all end in the capability's fallback value.
    Nothing raised inside a capability escapes to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-2.5-flash",
        client: Optional[Any] = None,
    ):
        self.model_name = model_name
        if client is not None:
            self.client = client
        elif api_key:
            self.client = genai.Client(api_key=api_key)
        else:
            self.client = None
            logger.warning(f"Gemini API key missing; {self.__class__.__name__} will return fallbacks.")

    async def _generate_text(
        self,
        contents: Any,
        temperature: float,
        response_schema: Optional[Any] = None,
        json_output: bool = True,
    ) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=contents,
            config=types.GenerateContentConfig(
                response_mime_type="application/json" if json_output else None,
                response_schema=response_schema,
                temperature=temperature,
            ),
        )
        return (response.text or "").strip()

    async def _generate_json(self, contents: Any, temperature: float, response_schema: Optional[Any] = None) -> Any:
        return parse_json(await self._generate_text(contents, temperature, response_schema))

    async def _guarded(
        self,
        capability: str,
        call: Callable[[], Awaitable[T]],
        fallback: T,
        notify: Optional[Notifier] = None,
    ) -> AiResult[T]:
        if self.client is None:
            if notify:
                notify(f"Using fallback AI for {capability}.", "error")
            return AiResult.fallback(fallback)
        try:
            return AiResult.ok(await call())
        except Exception as e:
            logger.error(f"Gemini API error in {capability}: {e}")
            if notify:
                notify(f"AI {capability} failed, using fallback.", "error")
            return AiResult.fallback(fallback)
