import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from celery import Celery
from fastapi.concurrency import run_in_threadpool

from taskflow.core.config import Settings
from taskflow.core.errors import QueueSubmitError

logger = logging.getLogger(__name__)


class JobType(str, Enum):
    STATUS_UPDATE = "task-status-update"
    OVERDUE_NOTIFY = "overdue-tasks-notification"


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and how patiently, the worker retries a failing job."""

    attempts: int = 3
    backoff_type: str = "exponential"
    delay_ms: int = 1000

    def countdown(self, retries: int) -> float:
        """Seconds to wait before the next try, given how many retries already ran."""
        if self.backoff_type == "exponential":
            return self.delay_ms * (2**retries) / 1000
        return self.delay_ms / 1000

    def as_options(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "backoff": {"type": self.backoff_type, "delay": self.delay_ms},
        }

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None) -> "RetryPolicy":
        if not options:
            return cls()
        backoff = options.get("backoff") or {}
        return cls(
            attempts=int(options.get("attempts", cls.attempts)),
            backoff_type=backoff.get("type", cls.backoff_type),
            delay_ms=int(backoff.get("delay", cls.delay_ms)),
        )


class QueueDispatcher:
    """
    Submits jobs to the Celery worker.

    Submission is fire-and-forget: the caller only learns whether the broker
    accepted the message. Execution failures are retried by the worker using
    the policy that travels with the job.
    """

    def __init__(
        self,
        app: Celery,
        queue_name: str = "task-processing",
        default_policy: RetryPolicy | None = None,
    ):
        self.app = app
        self.queue_name = queue_name
        self.default_policy = default_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, app: Celery, settings: Settings) -> "QueueDispatcher":
        policy = RetryPolicy(attempts=settings.queue_attempts, delay_ms=settings.queue_backoff_ms)
        return cls(app, settings.queue_name, default_policy=policy)

    async def submit(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """
        Enqueue one job.

        Raises:
            QueueSubmitError: when the broker does not accept the message
        """
        policy = retry_policy or self.default_policy
        try:
            # Publishing is blocking I/O, keep it off the event loop
            await run_in_threadpool(
                self.app.send_task,
                job_type.value,
                kwargs={"payload": payload, "options": policy.as_options()},
                queue=self.queue_name,
            )
        except Exception as e:
            logger.error(f"Failed to queue {job_type.value} job {payload}: {e}")
            raise QueueSubmitError() from e
        logger.debug(f"Queued {job_type.value} job: {payload}")
