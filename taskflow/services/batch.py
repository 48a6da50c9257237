import logging
from typing import Any, Protocol, Sequence

from taskflow.core.errors import (
    ERROR_MESSAGES,
    AuthorizationError,
    EmptyBatchError,
    InvalidActionError,
    InvalidBatchInputError,
    NotFoundError,
    QueueSubmitError,
)
from taskflow.models import Actor, BatchAction, BatchItemResult, Task, TaskStatus
from taskflow.queues.dispatcher import JobType, QueueDispatcher
from taskflow.services.task_service import invalidate_task_cache

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    async def get_many(self, task_ids: Sequence[str]) -> dict[str, Task]: ...

    async def bulk_update_status(self, task_ids: Sequence[str], status: TaskStatus) -> int: ...

    async def bulk_delete(self, task_ids: Sequence[str]) -> int: ...


class BatchOrchestrator:
    """
    Applies one action to many tasks and reports the outcome per task.

    Two phases:
    1. Validation with no side effects: input shape, action, existence and
       the actor's rights on every task. Any failure rejects the whole call.
    2. One bulk store mutation, then per-task queue submissions. A failed
       submission only marks its own task as failed.

    Once validation has passed the caller always gets exactly one result per
    requested id; an unexpected error marks every id as failed instead of
    escaping.
    """

    def __init__(self, store: TaskStore, dispatcher: QueueDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def process(self, task_ids: Any, action: str, actor: Actor) -> list[BatchItemResult]:
        if not isinstance(task_ids, list) or not all(
            isinstance(task_id, str) and task_id for task_id in task_ids
        ):
            raise InvalidBatchInputError()
        if not task_ids:
            raise EmptyBatchError()
        try:
            batch_action = BatchAction(action)
        except ValueError:
            raise InvalidActionError(action) from None

        await self._authorize(task_ids, actor)

        try:
            if batch_action is BatchAction.COMPLETE:
                results = await self._complete(task_ids)
            else:
                results = await self._delete(task_ids)
        except Exception as e:
            logger.exception(f"[batch_process({action})] {e}")
            message = str(e) or ERROR_MESSAGES["TASKS"]["BATCH_FAILED"]
            return [BatchItemResult(task_id=t, success=False, error=message) for t in task_ids]

        await invalidate_task_cache(task_ids)
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Batch {action} on {len(task_ids)} tasks finished ({failed} failed)")
        return results

    async def _authorize(self, task_ids: list[str], actor: Actor) -> None:
        tasks = await self.store.get_many(task_ids)
        for task_id in task_ids:
            task = tasks.get(task_id)
            if task is None:
                raise NotFoundError(task_id)
            if not actor.can_access(task):
                raise AuthorizationError()

    async def _complete(self, task_ids: list[str]) -> list[BatchItemResult]:
        await self.store.bulk_update_status(task_ids, TaskStatus.COMPLETED)

        results = []
        for task_id in task_ids:
            try:
                await self.dispatcher.submit(
                    JobType.STATUS_UPDATE,
                    {"taskId": task_id, "status": TaskStatus.COMPLETED.value},
                )
            except QueueSubmitError as e:
                results.append(BatchItemResult(task_id=task_id, success=False, error=e.message))
                continue
            results.append(
                BatchItemResult(
                    task_id=task_id,
                    success=True,
                    result={"status": TaskStatus.COMPLETED.value},
                )
            )
        return results

    async def _delete(self, task_ids: list[str]) -> list[BatchItemResult]:
        await self.store.bulk_delete(task_ids)
        return [
            BatchItemResult(task_id=task_id, success=True, result={"message": "Task deleted"})
            for task_id in task_ids
        ]
