from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Literal
from datetime import date

Role = Literal["Admin", "Advisor"]
MemberTier = Literal["Silver", "Gold", "Diamond", "Platinum"]
LeadStatus = Literal["Lead", "Contacted", "Meeting Scheduled", "Proposal Sent", "Won", "Lost"]
CommissionStatus = Literal["Pending", "Paid", "Cancelled"]

# Task status master ids
TASK_STATUS_PENDING = "ts-1"
TASK_STATUS_IN_PROGRESS = "ts-2"
TASK_STATUS_COMPLETED = "ts-3"
TASK_STATUS_CANCELLED = "ts-4"
TASK_STATUS_VIEWED = "ts-5"
TASK_STATUS_ASSIGNED = "ts-6"


# --- Reference data ---

class AdvisorProfile(BaseModel):
    employee_branch_id: Optional[str] = None
    status: Literal["Active", "Inactive"] = "Active"


class User(BaseModel):
    id: str
    name: str
    role: Role
    email: Optional[str] = None
    profile: AdvisorProfile = Field(default_factory=AdvisorProfile)

    @property
    def is_admin(self) -> bool:
        return self.role == "Admin"

    @property
    def branch_id(self) -> Optional[str]:
        return self.profile.employee_branch_id


class Branch(BaseModel):
    id: str
    branch_name: str
    active: bool = True


class LeadSourceMaster(BaseModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    active: bool = True


class TaskStatusMaster(BaseModel):
    id: str
    name: str
    active: bool = True


DEFAULT_TASK_STATUSES = [
    TaskStatusMaster(id=TASK_STATUS_ASSIGNED, name="Assigned"),
    TaskStatusMaster(id=TASK_STATUS_PENDING, name="Pending"),
    TaskStatusMaster(id=TASK_STATUS_VIEWED, name="Viewed"),
    TaskStatusMaster(id=TASK_STATUS_IN_PROGRESS, name="In Progress"),
    TaskStatusMaster(id=TASK_STATUS_COMPLETED, name="Completed"),
    TaskStatusMaster(id=TASK_STATUS_CANCELLED, name="Cancelled"),
]


# --- Members, policies and notes ---

class Commission(BaseModel):
    amount: float = 0
    status: CommissionStatus = "Pending"
    paid_date: Optional[str] = None


class PaymentDetails(BaseModel):
    transaction_id: str = "N/A"
    amount: str = "0"
    date: str = ""
    status: Literal["Verified", "Unverified", "Mismatch", "Error"] = "Unverified"
    status_reason: Optional[str] = None


class Policy(BaseModel):
    id: str
    policy_type: str
    scheme_name: Optional[str] = None
    policy_holder_type: Literal["Individual", "Family"] = "Individual"
    coverage: float = 0
    premium: float
    renewal_date: date
    status: Literal["Active", "Inactive"] = "Active"
    commission: Optional[Commission] = None
    payment_details: Optional[PaymentDetails] = None


class VoiceNote(BaseModel):
    id: str
    filename: str = ""
    client: str = ""
    recording_date: str
    detected_language: str = ""
    summary: str = ""
    tags: List[str] = Field(default_factory=list)
    status: str = "Completed"
    transcript_snippet: str = ""
    audio_url: Optional[str] = None
    action_items: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None


class LeadSource(BaseModel):
    source_id: Optional[str] = None
    detail: str = ""


class DigipinDetails(BaseModel):
    summary: Optional[str] = None
    landmarks: List[str] = Field(default_factory=list)


class Member(BaseModel):
    id: str
    member_id: str = ""
    name: str
    mobile: str = ""
    dob: Optional[str] = None
    email: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""
    member_type: MemberTier = "Silver"
    active: bool = True
    assigned_to: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    digipin: Optional[str] = None
    digipin_details: Optional[DigipinDetails] = None
    lead_source: Optional[LeadSource] = None
    policies: List[Policy] = Field(default_factory=list)
    voice_notes: List[VoiceNote] = Field(default_factory=list)
    is_spoc: bool = False
    spoc_id: Optional[str] = None


class Lead(BaseModel):
    id: str
    name: str
    phone: str = ""
    email: Optional[str] = None
    status: LeadStatus = "Lead"
    assigned_to: Optional[str] = None
    branch_id: Optional[str] = None
    lead_source: Optional[LeadSource] = None
    estimated_value: float = 0
    policy_interest_type: Optional[str] = None
    policy_interest_general_type: Optional[str] = None
    voice_notes: List[VoiceNote] = Field(default_factory=list)
    created_at: Optional[str] = None
    upsell_suggestion: Optional[str] = None


# --- Tasks ---

class TaskActivity(BaseModel):
    timestamp: str
    action: Literal["Created", "Status Change", "Details Updated", "Reassigned"]
    details: str
    by: str


class Task(BaseModel):
    id: str
    triggering_point: str = "Manual"
    task_description: str
    status_id: Optional[str] = None
    primary_contact_person: Optional[str] = None
    alternate_contact_persons: List[str] = Field(default_factory=list)
    member_id: Optional[str] = None
    lead_id: Optional[str] = None
    expected_completion_date_time: Optional[str] = None
    creation_date_time: Optional[str] = None
    task_type: Literal["Manual", "Auto"] = "Manual"
    is_shared: bool = False
    is_completed: bool = False
    active: bool = True
    activity_log: List[TaskActivity] = Field(default_factory=list)

    @model_validator(mode="after")
    def _single_subject(self):
        if self.member_id and self.lead_id:
            raise ValueError("A task can be linked to a member or a lead, not both.")
        return self

    @property
    def is_customer_task(self) -> bool:
        return bool(self.member_id or self.lead_id)


# --- Feeds ---

class NotificationSubject(BaseModel):
    id: str
    name: str
    mobile: str = ""


class Notification(BaseModel):
    id: str
    type: str
    date: str
    message: str
    subject: NotificationSubject
    recipient_id: Optional[str] = None
    source: Literal["auto", "custom"] = "auto"
    dismissed: bool = False


class ActivityEntry(BaseModel):
    id: str
    type: Literal["renewalSuccess"]
    message: str
    timestamp: str
    member_id: str
    policy_id: str


# --- AI outputs ---

class TodaysFocusItem(BaseModel):
    id: str
    priority: Literal["High", "Medium", "Low"] = "Medium"
    title: str
    rationale: str = ""
    action: str = ""
    related_id: Optional[str] = None
    related_name: Optional[str] = None


class UpsellOpportunity(BaseModel):
    id: str
    member_id: str
    member_name: str
    suggestions: str
    timestamp: str


class NoteSummary(BaseModel):
    summary: str
    detected_language: str = ""
    tags: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    status: str = "Completed"


class GrowthPoint(BaseModel):
    name: str
    customers: Optional[int] = None
    forecast: Optional[float] = None


# --- Snapshot ---

class CrmSnapshot(BaseModel):
    users: List[User] = Field(default_factory=list)
    branches: List[Branch] = Field(default_factory=list)
    lead_sources: List[LeadSourceMaster] = Field(default_factory=list)
    task_statuses: List[TaskStatusMaster] = Field(default_factory=lambda: list(DEFAULT_TASK_STATUSES))
    members: List[Member] = Field(default_factory=list)
    leads: List[Lead] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    notifications: List[Notification] = Field(default_factory=list)
    activity: List[ActivityEntry] = Field(default_factory=list)
