import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..models.schemas import Task
from ..pipelines.errors import CrmError, CrmNotFoundError
from ..pipelines.paging import Page
from ..pipelines.tasks import (
    ActiveView,
    AssignmentMode,
    TaskContext,
    TaskDraft,
    TaskNotFoundError,
    TaskPermissionError,
    TaskQuery,
    TaskRow,
    bulk_create_tasks,
    complete_task,
    create_task,
    open_task,
    reassign_options,
    reassign_task,
    resolve_bulk_targets,
    start_progress,
    task_pipeline,
    update_task,
    validate_task_draft,
)
from ..pipelines.visibility import VisibilityPolicy
from ..services.store import CrmStore
from ..settings import Settings
from .deps import get_app_settings, get_now, get_store, get_visibility, http_error

logger = logging.getLogger(__name__)


class BulkTaskRequest(BaseModel):
    draft: TaskDraft
    mode: AssignmentMode = "all_advisors"
    branch_ids: List[str] = Field(default_factory=list)


class BulkTaskResponse(BaseModel):
    task_ids: List[str]
    message: str


class TaskUpdateRequest(BaseModel):
    task_description: Optional[str] = None
    expected_completion_date_time: Optional[str] = None
    alternate_contact_persons: Optional[List[str]] = None
    member_id: Optional[str] = None
    lead_id: Optional[str] = None
    status_id: Optional[str] = None
    task_type: Optional[str] = None
    is_shared: Optional[bool] = None


class ReassignRequest(BaseModel):
    new_advisor_id: str


class AdvisorOption(BaseModel):
    id: str
    name: str
    is_alternate: bool


router = APIRouter(prefix="/tasks", tags=["tasks"])


def task_context(store: CrmStore) -> TaskContext:
    return TaskContext(store.users, store.branches, store.task_statuses)


def visible_task(store: CrmStore, visibility: VisibilityPolicy, task_id: str) -> Task:
    task = store.get_task(task_id)
    if not visibility.tasks([task]):
        raise TaskNotFoundError(f"Task {task_id} not found")
    return task


@router.get("", response_model=Page[TaskRow])
async def list_tasks(
    active_view: ActiveView = Query("all"),
    search: str = Query(""),
    status_id: str = Query("all"),
    advisor_id: str = Query("all"),
    branch_id: str = Query("all"),
    sort_key: str = Query("expected_completion_date_time"),
    descending: bool = Query(False),
    page: int = Query(1, ge=1),
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
    settings: Settings = Depends(get_app_settings),
) -> Page[TaskRow]:
    try:
        query = TaskQuery(
            active_view=active_view,
            search=search,
            status_id=status_id,
            advisor_id=advisor_id,
            branch_id=branch_id,
            sort_key=sort_key,
            descending=descending,
            page=page,
        )
        return task_pipeline(store.tasks, task_context(store), visibility, now, query, settings.page_size)
    except Exception as e:
        logger.error(f"Error listing tasks: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("", response_model=Task)
async def create(
    draft: TaskDraft,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> Task:
    try:
        user = visibility.user
        if not user.is_admin:
            # Advisors create tasks for themselves
            draft = draft.model_copy(update={"primary_contact_person": user.id})
        validate_task_draft(draft, user)
        task = create_task(draft, user, now)
        store.add_tasks([task])
        return task
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/bulk", response_model=BulkTaskResponse)
async def create_bulk(
    request: BulkTaskRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> BulkTaskResponse:
    try:
        user = visibility.user
        if not user.is_admin:
            raise TaskPermissionError("Only admins can assign tasks in bulk.")
        validate_task_draft(request.draft, user, request.mode)
        targets = resolve_bulk_targets(store.users, request.mode, request.branch_ids)
        tasks = bulk_create_tasks(request.draft, targets, user, now)
        store.add_tasks(tasks)
        return BulkTaskResponse(
            task_ids=[t.id for t in tasks],
            message=f"Task successfully assigned to {len(tasks)} advisor(s).",
        )
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/{task_id}", response_model=Task)
async def update(
    task_id: str,
    changes: TaskUpdateRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> Task:
    try:
        task = visible_task(store, visibility, task_id)
        updated = update_task(task, changes.model_dump(exclude_unset=True), visibility.user, now)
        store.save_task(updated)
        return updated
    except CrmError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{task_id}")
async def delete(
    task_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
):
    try:
        if not visibility.is_admin:
            raise TaskPermissionError("Only admins can delete tasks.")
        store.delete_task(task_id)
        return {"status": "deleted", "task_id": task_id}
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


async def _transition(task_id: str, store: CrmStore, visibility: VisibilityPolicy, now: datetime, action) -> Task:
    task = visible_task(store, visibility, task_id)
    updated = action(task, visibility.user, now)
    if updated is not task:
        store.save_task(updated)
    return updated


@router.post("/{task_id}/open", response_model=Task)
async def open_(
    task_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> Task:
    try:
        return await _transition(task_id, store, visibility, now, open_task)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{task_id}/start", response_model=Task)
async def start(
    task_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> Task:
    try:
        return await _transition(task_id, store, visibility, now, start_progress)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{task_id}/complete", response_model=Task)
async def complete(
    task_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> Task:
    try:
        return await _transition(task_id, store, visibility, now, complete_task)
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{task_id}/reassign-options", response_model=List[AdvisorOption])
async def list_reassign_options(
    task_id: str,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
) -> List[AdvisorOption]:
    try:
        task = visible_task(store, visibility, task_id)
        if not visibility.can_reassign(task):
            return []
        return [
            AdvisorOption(id=u.id, name=u.name, is_alternate=u.id in task.alternate_contact_persons)
            for u in reassign_options(task, store.users)
        ]
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{task_id}/reassign", response_model=Task)
async def reassign(
    task_id: str,
    request: ReassignRequest,
    store: CrmStore = Depends(get_store),
    visibility: VisibilityPolicy = Depends(get_visibility),
    now: datetime = Depends(get_now),
) -> Task:
    try:
        try:
            task = visible_task(store, visibility, task_id)
        except CrmNotFoundError:
            raise TaskNotFoundError("Task not found for reassignment.")
        updated, notification = reassign_task(
            task,
            request.new_advisor_id,
            visibility,
            store.users,
            store.members,
            store.leads,
            now,
        )
        store.save_task(updated)
        store.add_notification(notification)
        return updated
    except CrmError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
