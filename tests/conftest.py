"""
Shared fixtures: a small CRM world and a scripted stand-in for the Gemini client.
"""

from datetime import date, datetime
from types import SimpleNamespace
from typing import List, Union

import pytest

from finroots.models.schemas import (
    AdvisorProfile,
    Branch,
    Commission,
    CrmSnapshot,
    Lead,
    LeadSourceMaster,
    LeadSource,
    Member,
    Policy,
    Task,
    User,
    VoiceNote,
)

TODAY = date(2026, 10, 19)
NOW = datetime(2026, 10, 19, 9, 0, 0)


# =============================================================================
# Entity factories
# =============================================================================

def make_user(user_id: str, role: str = "Advisor", branch_id: str = None, name: str = None) -> User:
    return User(
        id=user_id,
        name=name or user_id.title(),
        role=role,
        profile=AdvisorProfile(employee_branch_id=branch_id),
    )


def make_policy(policy_id: str, renewal: date, premium: float = 10000, **kwargs) -> Policy:
    return Policy(id=policy_id, policy_type=kwargs.pop("policy_type", "Health"), premium=premium, renewal_date=renewal, **kwargs)


def make_note(note_id: str, recorded: str = "2026-10-01T10:00:00", **kwargs) -> VoiceNote:
    return VoiceNote(id=note_id, recording_date=recorded, **kwargs)


def make_member(member_id: str, assigned_to: List[str] = (), **kwargs) -> Member:
    return Member(id=member_id, name=kwargs.pop("name", member_id.title()), assigned_to=list(assigned_to), **kwargs)


def make_task(task_id: str, assignee: str = None, **kwargs) -> Task:
    return Task(
        id=task_id,
        task_description=kwargs.pop("task_description", f"Task {task_id}"),
        primary_contact_person=assignee,
        **kwargs,
    )


# =============================================================================
# Fake Gemini client
# =============================================================================

class FakeModels:
    def __init__(self, replies: List[Union[str, Exception]]):
        self.replies = list(replies)
        self.calls = []

    async def generate_content(self, model, contents, config=None):
        self.calls.append(contents)
        if not self.replies:
            raise RuntimeError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


class FakeFiles:
    def __init__(self):
        self.deleted = []

    async def upload(self, file, config=None):
        return SimpleNamespace(name="files/fake", uri="https://files/fake", state="ACTIVE")

    async def get(self, name):
        return SimpleNamespace(name=name, state="ACTIVE")

    async def delete(self, name):
        self.deleted.append(name)


class FakeGeminiClient:
    """Mimics the slice of ``genai.Client`` the agents use (``client.aio``)."""

    def __init__(self, *replies: Union[str, Exception]):
        self.models = FakeModels(list(replies))
        self.files = FakeFiles()
        self.aio = SimpleNamespace(models=self.models, files=self.files)


class FakeRedis:
    """Key/value slice of the arq Redis pool."""

    def __init__(self):
        self.data = {}

    async def set(self, key, value):
        self.data[key] = value

    async def get(self, key):
        return self.data.get(key)


# =============================================================================
# World
# =============================================================================

@pytest.fixture
def users():
    return [
        make_user("admin", role="Admin", branch_id="b-1", name="Asha Admin"),
        make_user("adv-1", branch_id="b-1", name="Ravi Advisor"),
        make_user("adv-2", branch_id="b-2", name="Neha Advisor"),
    ]


@pytest.fixture
def branches():
    return [Branch(id="b-1", branch_name="Mumbai"), Branch(id="b-2", branch_name="Pune")]


@pytest.fixture
def admin(users):
    return users[0]


@pytest.fixture
def advisor(users):
    return users[1]


@pytest.fixture
def other_advisor(users):
    return users[2]


@pytest.fixture
def lead_sources():
    return [
        LeadSourceMaster(id="ls-root", name="Referral"),
        LeadSourceMaster(id="ls-mid", name="Customer", parent_id="ls-root"),
        LeadSourceMaster(id="ls-leaf", name="Family Friend", parent_id="ls-mid"),
    ]


@pytest.fixture
def snapshot(users, branches, lead_sources):
    members = [
        make_member(
            "m-1",
            ["adv-1"],
            name="Amit Patel",
            city="Mumbai",
            state="Maharashtra",
            created_by="adv-1",
            lat=19.07,
            lng=72.87,
            lead_source=LeadSource(source_id="ls-leaf"),
            policies=[make_policy(
                "p-1", date(2026, 10, 29), premium=20000, commission=Commission(amount=2000, status="Pending"),
            )],
            voice_notes=[make_note("vn-1", summary="Wants a health top-up", action_items=["Send quote"])],
        ),
        make_member(
            "m-2",
            ["adv-2"],
            name="Sneha Kulkarni",
            city="Pune",
            state="Maharashtra",
            created_by="admin",
            lat=18.52,
            lng=73.85,
            policies=[make_policy(
                "p-2", date(2026, 10, 9), premium=5000, policy_type="Motor",
                commission=Commission(amount=500, status="Paid"),
            )],
        ),
    ]
    leads = [
        Lead(
            id="l-1", name="Rohan Gupta", assigned_to="adv-1", status="Contacted", branch_id="b-1",
            estimated_value=30000, created_at="2026-10-01T08:00:00Z",
        ),
        Lead(
            id="l-2", name="Meera Nair", assigned_to="adv-2", status="Won",
            estimated_value=15000, created_at="2026-08-15T08:00:00Z",
        ),
    ]
    tasks = [
        make_task("t-1", "adv-1", member_id="m-1", status_id="ts-6"),
        make_task("t-2", "adv-2", status_id="ts-1"),
    ]
    return CrmSnapshot(
        users=users,
        branches=branches,
        lead_sources=lead_sources,
        members=members,
        leads=leads,
        tasks=tasks,
    )
