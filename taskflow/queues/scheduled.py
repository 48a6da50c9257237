import asyncio
import logging
from datetime import datetime

from taskflow.core.config import get_settings
from taskflow.core.errors import QueueSubmitError
from taskflow.models import get_utc_now
from taskflow.queues.celery_app import celery_app
from taskflow.queues.dispatcher import JobType, QueueDispatcher
from taskflow.queues.runtime import worker_repository
from taskflow.repositories.task_repository import TaskRepository

logger = logging.getLogger(__name__)


async def queue_overdue_notifications(
    repo: TaskRepository,
    dispatcher: QueueDispatcher,
    batch_size: int = 100,
    now: datetime | None = None,
) -> dict[str, int]:
    """
    Submit one overdue-notification job per task that is past due and not
    completed. A task whose job cannot be queued is skipped and picked up
    again by the next scheduled run.
    """
    now = now or get_utc_now()
    queued = failed = 0

    async for batch in repo.stream_overdue(now, batch_size):
        for task in batch:
            payload = {
                "taskId": task.id,
                "userId": task.user_id,
                "title": task.title,
                "dueDate": task.due_date.isoformat() if task.due_date else None,
            }
            try:
                await dispatcher.submit(JobType.OVERDUE_NOTIFY, payload)
                queued += 1
            except QueueSubmitError:
                failed += 1

    logger.info(f"Overdue check completed: {queued} queued, {failed} failed")
    return {"queued": queued, "failed": failed}


async def _check_overdue_tasks() -> dict[str, int]:
    settings = get_settings()
    dispatcher = QueueDispatcher.from_settings(celery_app, settings)
    async with worker_repository() as repo:
        return await queue_overdue_notifications(repo, dispatcher, settings.queue_batch_size)


@celery_app.task(name="check-overdue-tasks")
def check_overdue_tasks():
    logger.debug("Checking for overdue tasks...")
    return asyncio.run(_check_overdue_tasks())
