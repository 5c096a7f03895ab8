import logging
from typing import List, Optional, Union

from ..models.schemas import (
    ActivityEntry,
    CrmSnapshot,
    Lead,
    Member,
    Notification,
    Task,
    User,
)
from ..pipelines.errors import CrmNotFoundError

logger = logging.getLogger(__name__)


class CrmStore:
    """
    In-memory working set the API reads from and writes back to.

    Pipelines never mutate entities; handlers replace whole records here
    after a pipeline operation returns the updated copy.
    """

    def __init__(self, snapshot: Optional[CrmSnapshot] = None):
        snapshot = snapshot or CrmSnapshot()
        self.users = list(snapshot.users)
        self.branches = list(snapshot.branches)
        self.lead_sources = list(snapshot.lead_sources)
        self.task_statuses = list(snapshot.task_statuses)
        self.members = list(snapshot.members)
        self.leads = list(snapshot.leads)
        self.tasks = list(snapshot.tasks)
        self.notifications = list(snapshot.notifications)
        self.activity = list(snapshot.activity)

    def snapshot(self) -> CrmSnapshot:
        return CrmSnapshot(
            users=self.users,
            branches=self.branches,
            lead_sources=self.lead_sources,
            task_statuses=self.task_statuses,
            members=self.members,
            leads=self.leads,
            tasks=self.tasks,
            notifications=self.notifications,
            activity=self.activity,
        )

    # --- Lookups ---

    @staticmethod
    def _find(records: List, record_id: str, label: str):
        for record in records:
            if record.id == record_id:
                return record
        raise CrmNotFoundError(f"{label} {record_id} not found")

    def get_user(self, user_id: str) -> User:
        return self._find(self.users, user_id, "User")

    def find_user(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def get_member(self, member_id: str) -> Member:
        return self._find(self.members, member_id, "Member")

    def get_lead(self, lead_id: str) -> Lead:
        return self._find(self.leads, lead_id, "Lead")

    def get_task(self, task_id: str) -> Task:
        return self._find(self.tasks, task_id, "Task")

    def get_owner(self, owner_kind: str, owner_id: str) -> Union[Member, Lead]:
        if owner_kind == "member":
            return self.get_member(owner_id)
        if owner_kind == "lead":
            return self.get_lead(owner_id)
        raise CrmNotFoundError(f"Unknown note owner kind: {owner_kind}")

    # --- Writes ---

    @staticmethod
    def _replace(records: List, updated) -> None:
        for i, record in enumerate(records):
            if record.id == updated.id:
                records[i] = updated
                return
        raise CrmNotFoundError(f"{updated.id} not found")

    def save_member(self, member: Member) -> None:
        self._replace(self.members, member)

    def save_lead(self, lead: Lead) -> None:
        self._replace(self.leads, lead)

    def save_owner(self, owner: Union[Member, Lead]) -> None:
        if isinstance(owner, Member):
            self.save_member(owner)
        else:
            self.save_lead(owner)

    def save_task(self, task: Task) -> None:
        self._replace(self.tasks, task)

    def add_tasks(self, tasks: List[Task]) -> None:
        self.tasks.extend(tasks)
        logger.info(f"Stored {len(tasks)} new task(s)")

    def delete_task(self, task_id: str) -> None:
        task = self.get_task(task_id)
        self.tasks.remove(task)

    def add_notification(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def notifications_for(self, user_id: str) -> List[Notification]:
        return [n for n in self.notifications if n.recipient_id == user_id and not n.dismissed]

    def add_activity(self, entry: ActivityEntry) -> None:
        self.activity.insert(0, entry)
