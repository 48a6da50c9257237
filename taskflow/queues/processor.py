"""
Celery tasks consuming jobs from the task-processing queue.

The handlers are plain coroutines so they can be exercised without a broker;
the Celery tasks wrap them with a per-job event loop and the retry policy that
was submitted with the job. Delivery is at-least-once, so both handlers are
safe to run twice for the same payload.
"""

import asyncio
import logging
from typing import Any

from taskflow.core.errors import NotFoundError
from taskflow.models import TaskStatus
from taskflow.queues.celery_app import celery_app
from taskflow.queues.dispatcher import JobType, RetryPolicy
from taskflow.queues.runtime import worker_repository
from taskflow.services.task_service import TaskService

logger = logging.getLogger(__name__)


def _valid_status(status: Any) -> bool:
    return status in {s.value for s in TaskStatus}


async def handle_status_update(payload: dict[str, Any], service: TaskService) -> dict[str, Any]:
    task_id = payload.get("taskId")
    status = payload.get("status")
    if not task_id or not _valid_status(status):
        logger.warning(f"Status update rejected: invalid taskId or status in {payload}")
        return {"success": False, "taskId": task_id, "error": "Invalid taskId or status"}

    try:
        task = await service.update_status(task_id, TaskStatus(status))
    except NotFoundError as e:
        # deleted since the job was queued; retrying cannot help
        logger.warning(f"Status update skipped: {e}")
        return {"success": False, "taskId": task_id, "error": e.message}
    logger.debug(f"Task {task_id} updated to {status}")
    return {"success": True, "taskId": task.id, "newStatus": task.status.value}


async def handle_overdue_notification(payload: dict[str, Any]) -> dict[str, Any]:
    task_id = payload.get("taskId")
    if not task_id:
        logger.warning(f"Overdue notification rejected: missing taskId in {payload}")
        return {"success": False, "error": "Invalid taskId"}

    # TODO: deliver through the notification service once it exists; logging only for now
    logger.info(
        f"Notifying user {payload.get('userId')} about overdue task {task_id}: "
        f"{payload.get('title')} (due {payload.get('dueDate')})"
    )
    return {"success": True, "taskId": task_id}


def _retry_or_drop(task, policy: RetryPolicy, exc: Exception) -> dict[str, Any]:
    """Schedule the next attempt, or log and drop the job when attempts are used up."""
    job = f"Job {task.request.id or '[no id]'} {task.name}"
    attempt = task.request.retries + 1
    if attempt >= policy.attempts:
        logger.error(f"{job} failed after {attempt} attempts, dropping: {exc}")
        return {"success": False, "error": str(exc)}

    countdown = policy.countdown(task.request.retries)
    logger.warning(f"{job} attempt {attempt} failed, retrying in {countdown:g}s: {exc}")
    raise task.retry(exc=exc, countdown=countdown, max_retries=policy.attempts - 1)


async def _apply_status_update(payload: dict[str, Any]) -> dict[str, Any]:
    async with worker_repository() as repo:
        return await handle_status_update(payload, TaskService(repo))


@celery_app.task(name=JobType.STATUS_UPDATE.value, bind=True)
def process_status_update(self, payload: dict[str, Any], options: dict[str, Any] | None = None):
    try:
        return asyncio.run(_apply_status_update(payload))
    except Exception as exc:
        return _retry_or_drop(self, RetryPolicy.from_options(options), exc)


@celery_app.task(name=JobType.OVERDUE_NOTIFY.value, bind=True)
def process_overdue_notification(
    self, payload: dict[str, Any], options: dict[str, Any] | None = None
):
    try:
        return asyncio.run(handle_overdue_notification(payload))
    except Exception as exc:
        return _retry_or_drop(self, RetryPolicy.from_options(options), exc)
