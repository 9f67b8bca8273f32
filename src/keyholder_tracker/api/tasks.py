"""Task API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth.dependencies import get_current_user_id
from ..domain.models import Task
from ..services import ServiceRegistry
from ..services.tasks import TaskDraft
from .dependencies import get_services
from .schemas import (
    DeadlineCheckResponse,
    ProblemDetails,
    TaskCreate,
    TaskListResponse,
    TaskStatusUpdate,
)

router = APIRouter(prefix="/v1/relationships/{relationship_id}/tasks", tags=["tasks"])

TASK_RESPONSES = {
    403: {"model": ProblemDetails, "description": "Insufficient permissions"},
    404: {"model": ProblemDetails, "description": "Relationship or task not found"},
}


@router.post(
    "",
    response_model=Task,
    status_code=status.HTTP_201_CREATED,
    responses={
        **TASK_RESPONSES,
        422: {"model": ProblemDetails, "description": "Validation error"},
    },
)
async def create_task(
    relationship_id: str,
    body: TaskCreate,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Task:
    """
    Assign a task.

    Keyholders need the ``tasks`` permission, plus ``punishments`` when the
    consequence is a punishment. Submissives may always set their own tasks.
    """
    draft = TaskDraft(text=body.text, due_date=body.due_date, consequence=body.consequence)
    return await services.tasks.create_task(relationship_id, draft, user_id)


@router.get("", response_model=TaskListResponse, responses=TASK_RESPONSES)
async def list_tasks(
    relationship_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> TaskListResponse:
    await services.permissions.require_participant(relationship_id, user_id)
    tasks = await services.tasks.get_tasks(relationship_id, limit)
    return TaskListResponse(tasks=tasks)


@router.post(
    "/check-deadlines",
    response_model=DeadlineCheckResponse,
    responses={
        **TASK_RESPONSES,
        409: {"model": ProblemDetails, "description": "Concurrent update, retry"},
    },
)
async def check_deadlines(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> DeadlineCheckResponse:
    """Send any due deadline notices; each notice goes out at most once per task."""
    await services.permissions.require_participant(relationship_id, user_id)
    notifications = await services.tasks.check_deadlines(relationship_id)
    return DeadlineCheckResponse(notifications=notifications)


@router.post(
    "/{task_id}/status",
    response_model=Task,
    responses={
        **TASK_RESPONSES,
        409: {"model": ProblemDetails, "description": "Transition not allowed"},
    },
)
async def update_task_status(
    relationship_id: str,
    task_id: str,
    body: TaskStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Task:
    """
    Move a task to a new status.

    The submissive submits and the keyholder approves or rejects; either
    side may complete an approved task. A note is stored as the submission
    or the keyholder feedback.
    """
    return await services.tasks.update_task_status(
        relationship_id, task_id, body.status, user_id, body.note
    )
