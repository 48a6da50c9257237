from fastapi import APIRouter, Depends, Query, status
from typing_extensions import Annotated

from taskflow.core.config import get_settings
from taskflow.core.errors import AuthorizationError
from taskflow.models import (
    BatchItemResult,
    BatchRequest,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskResponse,
    TaskStats,
    TaskUpdate,
)
from taskflow.ratelimit.limiter import RateLimit
from taskflow.routers.deps import ActorDep, BatchDep, TaskServiceDep

settings = get_settings()

router = APIRouter(
    prefix="/tasks",
    tags=["tasks"],
    dependencies=[Depends(RateLimit(settings.rate_limit_limit, settings.rate_limit_window_ms))],
)


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(task_data: TaskCreate, actor: ActorDep, service: TaskServiceDep):
    """Create a new task"""
    if not actor.is_admin and task_data.user_id != actor.id:
        raise AuthorizationError("You can only create tasks for yourself")
    return await service.create(task_data)


@router.get("/", response_model=TaskPage)
async def get_tasks(
    flt: Annotated[TaskFilter, Query()],
    actor: ActorDep,
    service: TaskServiceDep,
):
    """List tasks with optional filtering and pagination"""
    if not actor.is_admin:
        flt.user_id = actor.id
    return await service.find_all(flt)


@router.get("/stats", response_model=TaskStats)
async def get_stats(actor: ActorDep, service: TaskServiceDep):
    return await service.get_stats(actor)


@router.post("/batch", response_model=list[BatchItemResult])
async def batch_process(request: BatchRequest, actor: ActorDep, batch: BatchDep):
    """Complete or delete several tasks at once"""
    return await batch.process(request.tasks, request.action, actor)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, actor: ActorDep, service: TaskServiceDep):
    """Get a specific task by ID"""
    return await service.find_one(task_id, actor)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str, task_data: TaskUpdate, actor: ActorDep, service: TaskServiceDep
):
    return await service.update(task_id, task_data, actor)


@router.delete("/{task_id}")
async def delete_task(task_id: str, actor: ActorDep, service: TaskServiceDep):
    """Delete a task"""
    await service.remove(task_id, actor)
    return {"message": "Task deleted successfully"}
