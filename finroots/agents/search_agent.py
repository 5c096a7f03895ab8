import json
import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, TypeAdapter

from ..models.schemas import Member
from ..pipelines.notes import NoteRow
from .gateway import AiResult, GeminiAgent, Notifier

logger = logging.getLogger(__name__)

SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}


def soundex(name: str) -> str:
    """Four character phonetic code used to let the model match misspelled names."""
    letters = [c for c in name.lower() if c.isalpha()]
    if not letters:
        return ""
    codes = [SOUNDEX_CODES.get(c, "") for c in letters]
    result = letters[0].upper()
    previous = codes[0]
    for code in codes[1:]:
        if code and code != previous:
            result += code
        previous = code
    return (result + "000")[:4]


class NoteMatch(BaseModel):
    note_id: str
    matched_text: List[str]


_ID_LIST = TypeAdapter(List[str])
_NOTE_MATCHES = TypeAdapter(List[NoteMatch])


class SearchAgent(GeminiAgent):
    """Natural language search over members and voice notes."""

    async def search_members(
        self,
        query: str,
        members: Iterable[Member],
        notify: Optional[Notifier] = None,
    ) -> AiResult[List[str]]:
        """
        Match a free-text query against the given members.

        Returns member ids. An empty query matches everyone; any failure
        yields an empty match list.
        """
        members = list(members)
        if not query.strip():
            return AiResult.ok([m.id for m in members])

        async def call() -> List[str]:
            candidates = [
                {
                    "id": m.id,
                    "name": m.name,
                    "soundex": soundex(m.name),
                    "city": m.city,
                    "state": m.state,
                    "member_type": m.member_type,
                    "active": m.active,
                    "policy_types": [p.policy_type for p in m.policies],
                    "dob": m.dob,
                }
                for m in members
            ]
            prompt = f"""
You are a search assistant for an insurance CRM. Find the customers that match the advisor's query.

- Names may be misspelled; each customer has a "soundex" code you can compare against the query's names.
- Only return ids that appear in the customer list.
- Return a JSON array of matching customer ids and nothing else. Return [] when nothing matches.

Query: "{query}" (soundex of first word: {soundex(query.split()[0]) if query.split() else ''})

Customers:
{json.dumps(candidates, default=str)}
"""
            data = await self._generate_json(prompt, temperature=0, response_schema=list[str])
            ids = _ID_LIST.validate_python(data)
            known = {m.id for m in members}
            return [i for i in ids if i in known]

        return await self._guarded("member search", call, fallback=[], notify=notify)

    async def search_voice_notes(
        self,
        query: str,
        notes: Iterable[NoteRow],
        notify: Optional[Notifier] = None,
    ) -> AiResult[Dict[str, List[str]]]:
        """Semantic search over voice notes; maps note id to the passages that matched."""
        notes = list(notes)

        async def call() -> Dict[str, List[str]]:
            payload = [
                {
                    "note_id": row.note.id,
                    "client": row.owner_name,
                    "summary": row.note.summary,
                    "transcript": row.note.transcript_snippet,
                    "tags": row.note.tags,
                }
                for row in notes
            ]
            prompt = f"""
You search an advisor's voice notes. For the query below, return every note that is relevant.
For each match give the exact phrases from its summary or transcript that matched.

Return a JSON array of objects with "note_id" (string) and "matched_text" (array of strings).
Return [] when nothing matches.

Query: "{query}"

Notes:
{json.dumps(payload)}
"""
            data = await self._generate_json(prompt, temperature=0, response_schema=list[NoteMatch])
            known = {row.note.id for row in notes}
            return {
                match.note_id: match.matched_text
                for match in _NOTE_MATCHES.validate_python(data)
                if match.note_id in known
            }

        return await self._guarded("voice note search", call, fallback={}, notify=notify)
