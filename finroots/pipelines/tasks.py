import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from ..models.schemas import (
    Branch,
    Lead,
    Member,
    Notification,
    NotificationSubject,
    Task,
    TaskActivity,
    TaskStatusMaster,
    User,
    TASK_STATUS_ASSIGNED,
    TASK_STATUS_COMPLETED,
    TASK_STATUS_IN_PROGRESS,
    TASK_STATUS_VIEWED,
)
from ..utils.dates import epoch_seconds, parse_timestamp, to_naive_utc
from .errors import CrmNotFoundError, CrmPermissionError, CrmValidationError
from .paging import DEFAULT_PAGE_SIZE, Page, paginate, stable_sort
from .visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

ActiveView = Literal["all", "customer", "personal"]
AssignmentMode = Literal["individual", "all_advisors", "by_branch"]


class TaskValidationError(CrmValidationError):
    pass


class TaskPermissionError(CrmPermissionError):
    pass


class TaskTransitionError(CrmValidationError):
    pass


class TaskNotFoundError(CrmNotFoundError):
    pass


class TaskQuery(BaseModel):
    active_view: ActiveView = "all"
    search: str = ""
    status_id: str = "all"
    advisor_id: str = "all"
    branch_id: str = "all"
    sort_key: str = "expected_completion_date_time"
    descending: bool = False
    page: int = 1


class TaskDraft(BaseModel):
    """Fields a user supplies when creating a task."""
    task_description: str = ""
    expected_completion_date_time: Optional[str] = None
    primary_contact_person: Optional[str] = None
    alternate_contact_persons: List[str] = Field(default_factory=list)
    member_id: Optional[str] = None
    lead_id: Optional[str] = None
    status_id: Optional[str] = None
    task_type: Literal["Manual", "Auto"] = "Manual"
    triggering_point: str = "Manual"
    is_shared: Optional[bool] = None
    task_time: Optional[str] = None


class TaskRow(BaseModel):
    task: Task
    advisor_name: Optional[str] = None
    status_name: Optional[str] = None
    branch_name: Optional[str] = None
    task_kind: Literal["Customer", "Personal"]
    is_overdue: bool


def _new_task_id() -> str:
    return f"task-{uuid.uuid4()}"


def is_overdue(task: Task, now: datetime) -> bool:
    if task.is_completed or task.status_id == TASK_STATUS_COMPLETED:
        return False
    expected = parse_timestamp(task.expected_completion_date_time)
    return expected is not None and expected < to_naive_utc(now)


# --- Listing ---

class TaskContext:
    """Lookup tables the task pipeline resolves display names from."""

    def __init__(self, users: Iterable[User], branches: Iterable[Branch], statuses: Iterable[TaskStatusMaster]):
        self.users: Dict[str, User] = {u.id: u for u in users}
        self.branches: Dict[str, Branch] = {b.id: b for b in branches}
        self.statuses: Dict[str, TaskStatusMaster] = {s.id: s for s in statuses}

    def assignee(self, task: Task) -> Optional[User]:
        return self.users.get(task.primary_contact_person) if task.primary_contact_person else None

    def assignee_branch(self, task: Task) -> Optional[Branch]:
        user = self.assignee(task)
        if user is None or not user.branch_id:
            return None
        return self.branches.get(user.branch_id)

    def row(self, task: Task, now: datetime) -> TaskRow:
        user = self.assignee(task)
        branch = self.assignee_branch(task)
        status = self.statuses.get(task.status_id) if task.status_id else None
        return TaskRow(
            task=task,
            advisor_name=user.name if user else None,
            status_name=status.name if status else None,
            branch_name=branch.branch_name if branch else None,
            task_kind="Customer" if task.is_customer_task else "Personal",
            is_overdue=is_overdue(task, now),
        )


TASK_SORT_KEYS: Dict[str, Callable[[TaskRow], object]] = {
    "assigned_to": lambda r: r.advisor_name,
    "status": lambda r: r.status_name,
    "branch": lambda r: r.branch_name,
    "task_type": lambda r: r.task_kind,
    "task_description": lambda r: r.task.task_description.lower(),
}

TASK_DATE_KEYS = ("expected_completion_date_time", "creation_date_time")


def _task_sort_key(sort_key: str) -> Optional[Callable[[TaskRow], object]]:
    if sort_key in TASK_SORT_KEYS:
        return TASK_SORT_KEYS[sort_key]
    if sort_key in TASK_DATE_KEYS:
        # Missing dates compare as the epoch
        return lambda r: epoch_seconds(getattr(r.task, sort_key))
    return None


def filter_tasks(tasks: Iterable[Task], query: TaskQuery, context: TaskContext) -> List[Task]:
    result = list(tasks)
    if query.active_view == "customer":
        result = [t for t in result if t.is_customer_task]
    elif query.active_view == "personal":
        result = [t for t in result if not t.is_customer_task]

    search = query.search.strip().lower()
    if search:
        result = [t for t in result if search in t.task_description.lower()]
    if query.status_id and query.status_id != "all":
        result = [t for t in result if t.status_id == query.status_id]
    if query.advisor_id and query.advisor_id != "all":
        result = [t for t in result if t.primary_contact_person == query.advisor_id]
    if query.branch_id and query.branch_id != "all":
        result = [
            t for t in result
            if (context.assignee(t) and context.assignee(t).branch_id == query.branch_id)
        ]
    return result


def task_pipeline(
    tasks: Iterable[Task],
    context: TaskContext,
    visibility: VisibilityPolicy,
    now: datetime,
    query: Optional[TaskQuery] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Page[TaskRow]:
    query = query or TaskQuery()
    scoped = visibility.tasks(tasks)
    filtered = filter_tasks(scoped, query, context)
    rows = [context.row(t, now) for t in filtered]
    key = _task_sort_key(query.sort_key)
    if key is not None:
        rows = stable_sort(rows, key, query.descending)
    return paginate(rows, query.page, page_size)


# --- Creation ---

def validate_task_draft(draft: TaskDraft, user: User, assignment: AssignmentMode = "individual") -> None:
    if not draft.task_description.strip():
        raise TaskValidationError("Task description is required.")
    if assignment == "individual" and not draft.primary_contact_person:
        raise TaskValidationError("Please assign the task to an advisor.")
    if not user.is_admin and not (draft.member_id or draft.lead_id):
        raise TaskValidationError("Please select a customer or lead for the task.")
    if draft.member_id and draft.lead_id:
        raise TaskValidationError("A task can be linked to a member or a lead, not both.")


def resolve_bulk_targets(
    users: Iterable[User],
    mode: AssignmentMode,
    branch_ids: Iterable[str] = (),
) -> List[str]:
    advisors = [u for u in users if u.role == "Advisor"]
    if mode == "all_advisors":
        targets = [u.id for u in advisors]
    elif mode == "by_branch":
        wanted = set(branch_ids)
        targets = [u.id for u in advisors if u.branch_id in wanted]
    else:
        raise TaskValidationError(f"Unsupported bulk assignment mode: {mode}")
    if not targets:
        raise TaskValidationError("No advisors found for the selected criteria.")
    return targets


def _activity(action: str, details: str, by: str, now: datetime) -> TaskActivity:
    return TaskActivity(timestamp=now.isoformat(), action=action, details=details, by=by)


def create_task(draft: TaskDraft, user: User, now: datetime, details: str = "Task was created.") -> Task:
    is_shared = draft.is_shared if draft.is_shared is not None else draft.task_type == "Auto"
    return Task(
        id=_new_task_id(),
        triggering_point=draft.triggering_point,
        task_description=draft.task_description.strip(),
        status_id=draft.status_id or TASK_STATUS_ASSIGNED,
        primary_contact_person=draft.primary_contact_person or user.id,
        alternate_contact_persons=list(draft.alternate_contact_persons),
        member_id=draft.member_id,
        lead_id=draft.lead_id,
        expected_completion_date_time=draft.expected_completion_date_time or now.isoformat(),
        creation_date_time=now.isoformat(),
        task_type=draft.task_type,
        is_shared=is_shared,
        activity_log=[_activity("Created", details, user.id, now)],
    )


def bulk_create_tasks(draft: TaskDraft, advisor_ids: Iterable[str], user: User, now: datetime) -> List[Task]:
    """One independent task per advisor."""
    tasks = [
        create_task(
            draft.model_copy(update={"primary_contact_person": advisor_id}),
            user,
            now,
            details="Task was created via bulk assignment.",
        )
        for advisor_id in advisor_ids
    ]
    logger.info(f"Bulk-created {len(tasks)} task(s) for {user.id}")
    return tasks


# --- Lifecycle ---

EDITABLE_TASK_FIELDS = (
    "task_description",
    "expected_completion_date_time",
    "alternate_contact_persons",
    "member_id",
    "lead_id",
    "task_type",
    "triggering_point",
    "is_shared",
)


def update_task(existing: Task, changes: Dict[str, object], user: User, now: datetime) -> Task:
    """Apply a field edit. Reassignment goes through reassign_task instead."""
    if "primary_contact_person" in changes and changes["primary_contact_person"] != existing.primary_contact_person:
        raise TaskValidationError("Use reassignment to change the task's advisor.")

    status_id = changes.get("status_id", existing.status_id)
    field_changes = {
        k: v for k, v in changes.items()
        if k in EDITABLE_TASK_FIELDS and getattr(existing, k) != v
    }
    log = list(existing.activity_log)
    if status_id != existing.status_id:
        log.append(_activity("Status Change", "Status was updated in modal.", user.id, now))
    if field_changes:
        log.append(_activity("Details Updated", "Task details were updated.", user.id, now))

    update = dict(field_changes, status_id=status_id, activity_log=log)
    if status_id == TASK_STATUS_COMPLETED:
        update["is_completed"] = True
    return Task.model_validate(existing.model_copy(update=update).model_dump())


def open_task(task: Task, user: User, now: datetime) -> Task:
    """Opening a freshly assigned task marks it viewed."""
    if task.status_id != TASK_STATUS_ASSIGNED:
        return task
    return task.model_copy(update={
        "status_id": TASK_STATUS_VIEWED,
        "activity_log": task.activity_log + [
            _activity("Status Change", "Status changed from Assigned to Viewed.", user.id, now)
        ],
    })


def start_progress(task: Task, user: User, now: datetime) -> Task:
    if task.status_id != TASK_STATUS_VIEWED:
        raise TaskTransitionError("Only viewed tasks can be started.")
    return task.model_copy(update={
        "status_id": TASK_STATUS_IN_PROGRESS,
        "activity_log": task.activity_log + [
            _activity("Status Change", "Status changed from Viewed to In Progress.", user.id, now)
        ],
    })


def complete_task(task: Task, user: User, now: datetime) -> Task:
    if task.status_id != TASK_STATUS_IN_PROGRESS:
        raise TaskTransitionError("Only tasks in progress can be completed.")
    return task.model_copy(update={
        "status_id": TASK_STATUS_COMPLETED,
        "is_completed": True,
        "activity_log": task.activity_log + [
            _activity("Status Change", "Status changed from In Progress to Completed.", user.id, now)
        ],
    })


def reassign_options(task: Task, users: Iterable[User]) -> List[User]:
    """Advisors the task can move to, alternates first."""
    candidates = [u for u in users if u.role == "Advisor" and u.id != task.primary_contact_person]
    alternates = [u for u in candidates if u.id in task.alternate_contact_persons]
    others = [u for u in candidates if u.id not in task.alternate_contact_persons]
    return alternates + others


def _task_subject(task: Task, members: Dict[str, Member], leads: Dict[str, Lead]) -> NotificationSubject:
    if task.member_id and task.member_id in members:
        member = members[task.member_id]
        return NotificationSubject(id=member.id, name=member.name, mobile=member.mobile)
    if task.lead_id and task.lead_id in leads:
        lead = leads[task.lead_id]
        return NotificationSubject(id=lead.id, name=lead.name, mobile=lead.phone)
    return NotificationSubject(id="personal-task", name="Personal Task")


def reassign_task(
    task: Task,
    new_advisor_id: str,
    visibility: VisibilityPolicy,
    users: Iterable[User],
    members: Iterable[Member],
    leads: Iterable[Lead],
    now: datetime,
) -> Tuple[Task, Notification]:
    """
    Move a task to another advisor.

    Recorded in the task's activity log with the acting user, resets the
    status to Assigned and produces a notification for the new assignee.
    """
    users_by_id = {u.id: u for u in users}
    new_advisor = users_by_id.get(new_advisor_id)
    if new_advisor is None:
        raise TaskNotFoundError("New advisor not found.")
    actor = visibility.user
    if not visibility.can_reassign(task):
        raise TaskPermissionError("You cannot reassign this task.")
    if new_advisor_id == task.primary_contact_person:
        raise TaskValidationError("The task is already assigned to this advisor.")

    old_advisor = users_by_id.get(task.primary_contact_person) if task.primary_contact_person else None
    old_name = old_advisor.name if old_advisor else "Unassigned"
    updated = task.model_copy(update={
        "primary_contact_person": new_advisor_id,
        "status_id": TASK_STATUS_ASSIGNED,
        "activity_log": task.activity_log + [
            _activity("Reassigned", f"Task reassigned from {old_name} to {new_advisor.name}.", actor.id, now)
        ],
    })
    notification = Notification(
        id=f"notif-{uuid.uuid4().hex[:12]}",
        type="Task Assignment",
        date=now.isoformat(),
        message=f'Task "{task.task_description}" has been reassigned to you.',
        subject=_task_subject(task, {m.id: m for m in members}, {l.id: l for l in leads}),
        recipient_id=new_advisor_id,
        source="auto",
    )
    logger.info(f"Task {task.id} reassigned from {old_name} to {new_advisor.name} by {actor.id}")
    return updated, notification
