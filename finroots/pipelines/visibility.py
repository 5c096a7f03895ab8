from typing import Iterable, List, Union

from ..models.schemas import Lead, Member, Task, User, TASK_STATUS_COMPLETED


class VisibilityPolicy:
    """
    Role-based scoping shared by every pipeline.

    Admins see everything. Advisors see the members, leads, tasks and notes
    they are responsible for.
    """

    def __init__(self, user: User):
        self.user = user

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin

    def owns_member(self, member: Member) -> bool:
        return self.user.id in member.assigned_to or member.created_by == self.user.id

    def members(self, members: Iterable[Member], created_only: bool = False) -> List[Member]:
        if self.is_admin:
            return list(members)
        if created_only:
            return [m for m in members if m.created_by == self.user.id]
        return [m for m in members if self.owns_member(m)]

    def leads(self, leads: Iterable[Lead]) -> List[Lead]:
        if self.is_admin:
            return list(leads)
        return [l for l in leads if l.assigned_to == self.user.id]

    def tasks(self, tasks: Iterable[Task]) -> List[Task]:
        if self.is_admin:
            return list(tasks)
        return [t for t in tasks if t.primary_contact_person == self.user.id]

    def sees_member_notes(self, member: Member) -> bool:
        # Notes follow the current assignment, not authorship of the member record
        return self.is_admin or self.user.id in member.assigned_to

    def sees_lead_notes(self, lead: Lead) -> bool:
        return self.is_admin or lead.assigned_to == self.user.id

    def can_write_notes_for(self, owner: Union[Member, Lead]) -> bool:
        if isinstance(owner, Member):
            return self.sees_member_notes(owner)
        return self.sees_lead_notes(owner)

    def can_reassign(self, task: Task) -> bool:
        if task.is_completed or task.status_id == TASK_STATUS_COMPLETED:
            return False
        return self.is_admin or task.primary_contact_person == self.user.id
