import json
import logging
import uuid
from datetime import date, datetime
from typing import List, Optional

from google.genai import types
from pydantic import BaseModel, TypeAdapter

from ..models.schemas import GrowthPoint, Lead, Member, PaymentDetails, TodaysFocusItem, UpsellOpportunity, User
from ..pipelines.policies import PolicyRow
from ..pipelines.tasks import TaskRow
from .gateway import AiResult, GeminiAgent, Notifier

logger = logging.getLogger(__name__)

FORECAST_MONTHS = 3
CHAT_FALLBACK = "Fallback: I can help with basic queries only."


class _ForecastPoint(BaseModel):
    name: str
    forecast: float


class _Suggestion(BaseModel):
    suggestions: str


_FORECAST = TypeAdapter(List[_ForecastPoint])
_FOCUS = TypeAdapter(List[TodaysFocusItem])


class InsightsAgent(GeminiAgent):
    """Forecasts, daily priorities, upsell ideas, payment checks and the advisor chatbot."""

    async def forecast_growth(
        self,
        history: List[GrowthPoint],
        notify: Optional[Notifier] = None,
    ) -> AiResult[List[GrowthPoint]]:
        async def call() -> List[GrowthPoint]:
            series = [{"month": p.name, "customers": p.customers} for p in history]
            prompt = f"""
Given this monthly cumulative customer count for an insurance advisory business,
forecast the next {FORECAST_MONTHS} months.
Label months in the same "Mon 'YY" format. Return a JSON array of
{{"name": string, "forecast": number}} objects, oldest first.

History:
{json.dumps(series)}
"""
            points = _FORECAST.validate_python(
                await self._generate_json(prompt, temperature=0.4, response_schema=list[_ForecastPoint])
            )
            if not points:
                raise ValueError("Empty forecast")
            return [GrowthPoint(name=p.name, forecast=p.forecast) for p in points[:FORECAST_MONTHS]]

        return await self._guarded("growth forecast", call, fallback=[], notify=notify)

    async def todays_focus(
        self,
        advisor: User,
        tasks: List[TaskRow],
        renewals: List[PolicyRow],
        leads: List[Lead],
        today: date,
        notify: Optional[Notifier] = None,
    ) -> AiResult[List[TodaysFocusItem]]:
        """Rank the advisor's most important actions for the day."""
        async def call() -> List[TodaysFocusItem]:
            context = {
                "today": today.isoformat(),
                "tasks": [
                    {
                        "id": r.task.id,
                        "description": r.task.task_description,
                        "due": r.task.expected_completion_date_time,
                        "status": r.status_name,
                        "overdue": r.is_overdue,
                    }
                    for r in tasks
                ],
                "renewals": [
                    {
                        "id": r.member_id,
                        "member": r.member_name,
                        "policy": r.policy.policy_type,
                        "days_left": r.days_left,
                        "premium": r.policy.premium,
                    }
                    for r in renewals
                ],
                "leads": [
                    {"id": l.id, "name": l.name, "status": l.status, "estimated_value": l.estimated_value}
                    for l in leads
                ],
            }
            prompt = f"""
You are a productivity coach for {advisor.name}, an insurance advisor.
From the data below pick the 3 to 5 most important things to do today.
Prefer overdue tasks, renewals due within a week and high value leads.

Return a JSON array of objects with "id", "priority" (High, Medium or Low), "title",
"rationale", "action", "related_id" and "related_name".

Data:
{json.dumps(context)}
"""
            return _FOCUS.validate_python(
                await self._generate_json(prompt, temperature=0.5, response_schema=list[TodaysFocusItem])
            )

        return await self._guarded("today's focus", call, fallback=[], notify=notify)

    async def upsell_for_member(
        self,
        member: Member,
        now: datetime,
        notify: Optional[Notifier] = None,
    ) -> AiResult[Optional[UpsellOpportunity]]:
        async def call() -> Optional[UpsellOpportunity]:
            profile = {
                "id": member.id,
                "name": member.name,
                "dob": member.dob,
                "member_type": member.member_type,
                "existing_policies": [p.policy_type for p in member.policies],
                "total_premium": sum(p.premium for p in member.policies),
            }
            prompt = f"""
You are an expert financial advisor. Suggest one concise upsell or cross-sell idea (a new policy
or a rider) that complements this client's portfolio, with a brief rationale.
Return JSON {{"suggestions": string}}; use an empty string if there is no clear opportunity.

Client:
{json.dumps(profile)}
"""
            result = _Suggestion.model_validate(
                await self._generate_json(prompt, temperature=0.7, response_schema=_Suggestion)
            )
            if not result.suggestions.strip():
                return None
            return UpsellOpportunity(
                id=f"op-{member.id}-{uuid.uuid4().hex[:8]}",
                member_id=member.id,
                member_name=member.name,
                suggestions=result.suggestions.strip(),
                timestamp=now.isoformat(),
            )

        return await self._guarded("upsell suggestion", call, fallback=None, notify=notify)

    async def analyze_payment_proof(
        self,
        image: bytes,
        mime_type: str,
        expected_amount: float,
        notify: Optional[Notifier] = None,
    ) -> AiResult[PaymentDetails]:
        """Read a payment screenshot and compare the paid amount with the premium."""
        fallback = PaymentDetails(
            transaction_id="N/A",
            amount="0",
            date="",
            status="Unverified",
            status_reason="Fallback AI used.",
        )

        async def call() -> PaymentDetails:
            prompt = f"""
You are a financial document analyst. Extract the transaction id, amount paid and transaction date
(YYYY-MM-DD) from this payment confirmation. The expected amount is {expected_amount}.

"status" must be one of:
- "Verified": the amount matches the expected amount
- "Mismatch": the amount differs ("Extracted amount X does not match expected amount Y")
- "Unverified": the amount could not be read

Return JSON with "transaction_id" ("N/A" if none), "amount", "date", "status" and "status_reason".
"""
            contents = [
                types.Part.from_bytes(data=image, mime_type=mime_type),
                prompt,
            ]
            details = PaymentDetails.model_validate(
                await self._generate_json(contents, temperature=0, response_schema=PaymentDetails)
            )
            if details.status not in ("Verified", "Mismatch", "Unverified"):
                raise ValueError(f"Invalid status received from AI: {details.status}")
            return details

        return await self._guarded("payment proof analysis", call, fallback=fallback, notify=notify)

    async def chat(
        self,
        message: str,
        members: List[Member],
        today: date,
        notify: Optional[Notifier] = None,
    ) -> AiResult[str]:
        async def call() -> str:
            customers = [
                m.model_dump(mode="json", exclude={"voice_notes", "digipin_details"})
                for m in members
            ]
            prompt = f"""
You are FinBot, an assistant for a financial advisor using the FinRoots CRM.
Today's date is {today.isoformat()}. Answer using the customer data below.
List policies with type, premium and renewal date. Keep answers short and use bullet points.
Ask for clarification when the question is unclear.

Advisor's message: "{message}"

Customer data:
{json.dumps(customers)}
"""
            text = await self._generate_text(prompt, temperature=0.5, json_output=False)
            if not text:
                raise ValueError("Empty chat response")
            return text

        return await self._guarded("chat", call, fallback=CHAT_FALLBACK, notify=notify)
