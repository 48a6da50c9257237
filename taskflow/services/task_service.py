import json
import logging
import math
from typing import Iterable

from taskflow.cache.decorators import async_cached, async_cached_expire
from taskflow.cache.layer import get_cache_layer
from taskflow.core.errors import (
    AuthorizationError,
    CacheError,
    InvalidPaginationError,
    NotFoundError,
    QueueSubmitError,
)
from taskflow.models import (
    Actor,
    Task,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskResponse,
    TaskStats,
    TaskStatus,
    TaskUpdate,
)
from taskflow.queues.dispatcher import JobType, QueueDispatcher
from taskflow.repositories.task_repository import TaskRepository

logger = logging.getLogger(__name__)

TASK_TTL = 120
LIST_TTL = 60


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def list_key(flt: TaskFilter) -> str:
    return "tasks:" + json.dumps(flt.model_dump(mode="json"), sort_keys=True)


async def invalidate_task_cache(task_ids: Iterable[str] = ()) -> None:
    """Drop cached single-task entries and every cached list page."""
    cache = get_cache_layer()
    if cache is None:
        return
    try:
        for task_id in task_ids:
            await cache.delete(task_key(task_id))
        await cache.delete_pattern("tasks:*")
    except CacheError as e:
        logger.warning(f"Task cache invalidation failed: {e}")


class TaskService:
    def __init__(self, repo: TaskRepository, dispatcher: QueueDispatcher | None = None):
        self.repo = repo
        self.dispatcher = dispatcher

    async def _queue_status(self, task_id: str, status: TaskStatus) -> None:
        if self.dispatcher is None:
            return
        await self.dispatcher.submit(
            JobType.STATUS_UPDATE, {"taskId": task_id, "status": status.value}
        )

    async def _get_owned(self, task_id: str, actor: Actor) -> Task:
        task = await self.repo.get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        if not actor.can_access(task):
            raise AuthorizationError()
        return task

    async def create(self, task_data: TaskCreate) -> Task:
        task = await self.repo.add(Task.model_validate(task_data))
        logger.info(f"Created task {task.id}: {task.title}")
        try:
            await self._queue_status(task.id, task.status)
        except QueueSubmitError:
            # roll back the insert when its job cannot be queued
            await self.repo.remove(task)
            raise
        await invalidate_task_cache()
        return task

    async def find_all(self, flt: TaskFilter) -> TaskPage:
        if flt.page < 1 or flt.limit < 1:
            raise InvalidPaginationError()

        async def loader():
            items, total = await self.repo.find_page(flt)
            page = TaskPage(
                items=[TaskResponse.model_validate(t) for t in items],
                count=total,
                page=flt.page,
                limit=flt.limit,
                total_pages=math.ceil(total / flt.limit),
            )
            return page.model_dump(mode="json")

        cache = get_cache_layer()
        if cache is None:
            data = await loader()
        else:
            data = await cache.get_or_load(list_key(flt), loader=loader, ttl=LIST_TTL)
        return TaskPage.model_validate(data)

    @async_cached(lambda self, task_id, *_, **__: task_key(task_id), ttl=TASK_TTL)
    async def get_task_data(self, task_id: str):
        task = await self.repo.get(task_id)
        if task is None:
            return None
        return TaskResponse.model_validate(task)

    async def find_one(self, task_id: str, actor: Actor) -> TaskResponse:
        data = await self.get_task_data(task_id)
        if data is None:
            raise NotFoundError(task_id)
        task = TaskResponse.model_validate(data)
        if not actor.can_access(task):
            raise AuthorizationError("You cannot access this task")
        return task

    @async_cached_expire(lambda self, task_id, *_, **__: task_key(task_id))
    async def update(self, task_id: str, task_data: TaskUpdate, actor: Actor) -> Task:
        task = await self._get_owned(task_id, actor)
        original_status = task.status

        update_data = task_data.model_dump(exclude_unset=True)
        previous = {field: getattr(task, field) for field in update_data}
        task.sqlmodel_update(update_data)
        task = await self.repo.save(task)

        try:
            if task_data.status and task_data.status != original_status:
                await self._queue_status(task.id, task.status)
        except QueueSubmitError:
            # the change only stands once its status job is queued
            task.sqlmodel_update(previous)
            await self.repo.save(task)
            logger.warning(f"Reverted update of task {task.id}: status job not queued")
            raise
        finally:
            await invalidate_task_cache([task.id])
        return task

    @async_cached_expire(lambda self, task_id, *_, **__: task_key(task_id))
    async def remove(self, task_id: str, actor: Actor) -> None:
        task = await self._get_owned(task_id, actor)
        await self.repo.remove(task)
        await invalidate_task_cache([task_id])
        logger.info(f"Deleted task {task_id}")

    @async_cached_expire(lambda self, task_id, *_, **__: task_key(task_id))
    async def update_status(self, task_id: str, status: TaskStatus) -> Task:
        """Apply a status change coming from the worker. Does not queue again."""
        task = await self.repo.get(task_id)
        if task is None:
            raise NotFoundError(task_id)
        task.status = status
        task = await self.repo.save(task)
        await invalidate_task_cache([task.id])
        return task

    async def get_stats(self, actor: Actor) -> TaskStats:
        return await self.repo.stats(None if actor.is_admin else actor.id)
