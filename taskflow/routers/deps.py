from fastapi import Depends, Header, HTTPException, Request, status
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from taskflow.database import get_db
from taskflow.models import Actor
from taskflow.queues.dispatcher import QueueDispatcher
from taskflow.repositories.task_repository import TaskRepository
from taskflow.services.batch import BatchOrchestrator
from taskflow.services.task_service import TaskService


async def get_current_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str, Header()] = "user",
) -> Actor:
    """Identity forwarded by the authenticating gateway."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return Actor(id=x_user_id, role=x_user_role)


def get_dispatcher(request: Request) -> QueueDispatcher:
    return request.app.state.dispatcher


async def get_task_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: QueueDispatcher = Depends(get_dispatcher),
) -> TaskService:
    return TaskService(TaskRepository(db), dispatcher)


async def get_batch_orchestrator(
    db: AsyncSession = Depends(get_db),
    dispatcher: QueueDispatcher = Depends(get_dispatcher),
) -> BatchOrchestrator:
    return BatchOrchestrator(TaskRepository(db), dispatcher)


ActorDep = Annotated[Actor, Depends(get_current_actor)]
TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
BatchDep = Annotated[BatchOrchestrator, Depends(get_batch_orchestrator)]
