"""Task routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from agentflow.api.auth import require_bearer
from agentflow.market.models import AcceptTaskRequest, CreateTaskRequest, Task, TaskStatus
from agentflow.market.tasks import TaskLifecycle

router = APIRouter(prefix="/tasks", tags=["Tasks"])


def _lifecycle(request: Request) -> TaskLifecycle:
    return request.app.state.tasks


@router.post(
    "",
    response_model=Task,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_bearer)],
)
def create_task(payload: CreateTaskRequest, request: Request) -> Task:
    """Persist an OPEN task and publish TASK_POSTED to the marketplace log."""
    transition = _lifecycle(request).create(
        title=payload.title,
        description=payload.description,
        budget=payload.budget,
        creator_id=payload.creator_id,
    )
    return transition.task


@router.get("", response_model=list[Task])
def list_tasks(request: Request, status: TaskStatus | None = None) -> list[Task]:
    return _lifecycle(request).list_tasks(status)


@router.get("/{task_id}", response_model=Task)
def get_task(task_id: str, request: Request) -> Task:
    return _lifecycle(request).get(task_id)


@router.post(
    "/{task_id}/accept",
    response_model=Task,
    dependencies=[Depends(require_bearer)],
)
def accept_task(task_id: str, payload: AcceptTaskRequest, request: Request) -> Task:
    return _lifecycle(request).accept(task_id, payload.assignee_id).task


@router.post(
    "/{task_id}/complete",
    response_model=Task,
    dependencies=[Depends(require_bearer)],
)
def complete_task(task_id: str, request: Request) -> Task:
    """Pay the assignee the task budget and mark the task COMPLETED."""
    return _lifecycle(request).complete(task_id).task
