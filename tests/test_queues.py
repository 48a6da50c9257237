# tests/test_queues.py

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest
from kombu.exceptions import OperationalError

from taskflow.core.errors import QueueSubmitError
from taskflow.models import TaskStatus, get_utc_now
from taskflow.queues.dispatcher import JobType, QueueDispatcher, RetryPolicy
from taskflow.queues.processor import (
    _retry_or_drop,
    handle_overdue_notification,
    handle_status_update,
)
from taskflow.queues.scheduled import queue_overdue_notifications

from .fakes import FakeCeleryApp, FakeDispatcher, FakeStatusService, make_task


class _Retry(Exception):
    pass


class FakeCeleryTask:
    """Just enough of a bound Celery task for the retry helper."""

    name = "task-status-update"

    def __init__(self, retries: int) -> None:
        self.request = SimpleNamespace(id="job-1", retries=retries)
        self.retry_calls: list[dict] = []

    def retry(self, **kwargs):
        self.retry_calls.append(kwargs)
        return _Retry()


def test_retry_policy_backs_off_exponentially() -> None:
    policy = RetryPolicy()

    assert [policy.countdown(n) for n in range(3)] == [1.0, 2.0, 4.0]
    assert policy.as_options() == {
        "attempts": 3,
        "backoff": {"type": "exponential", "delay": 1000},
    }
    assert RetryPolicy.from_options(policy.as_options()) == policy
    assert RetryPolicy.from_options(None) == policy


@pytest.mark.asyncio
async def test_submit_sends_named_task_with_policy() -> None:
    app = FakeCeleryApp()
    dispatcher = QueueDispatcher(app, queue_name="jobs")

    await dispatcher.submit(
        JobType.STATUS_UPDATE,
        {"taskId": "t1", "status": "COMPLETED"},
        RetryPolicy(attempts=5, delay_ms=250),
    )

    assert app.sent == [
        (
            "task-status-update",
            {
                "kwargs": {
                    "payload": {"taskId": "t1", "status": "COMPLETED"},
                    "options": {"attempts": 5, "backoff": {"type": "exponential", "delay": 250}},
                },
                "queue": "jobs",
            },
        )
    ]


@pytest.mark.asyncio
async def test_submit_failure_raises_queue_error() -> None:
    dispatcher = QueueDispatcher(FakeCeleryApp(error=OperationalError("broker down")))

    with pytest.raises(QueueSubmitError) as exc_info:
        await dispatcher.submit(JobType.OVERDUE_NOTIFY, {"taskId": "t1"})
    assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_status_update_applies_valid_payload() -> None:
    service = FakeStatusService(known={"t1"})

    result = await handle_status_update({"taskId": "t1", "status": "IN_PROGRESS"}, service)

    assert result == {"success": True, "taskId": "t1", "newStatus": "IN_PROGRESS"}
    assert service.updates == [("t1", TaskStatus.IN_PROGRESS)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload", [{"status": "COMPLETED"}, {"taskId": "t1", "status": "ARCHIVED"}, {}]
)
async def test_status_update_rejects_invalid_payload(payload) -> None:
    service = FakeStatusService(known={"t1"})

    result = await handle_status_update(payload, service)

    assert result["success"] is False
    assert result["error"] == "Invalid taskId or status"
    assert service.updates == []


@pytest.mark.asyncio
async def test_status_update_for_deleted_task_is_not_retried() -> None:
    result = await handle_status_update(
        {"taskId": "gone", "status": "COMPLETED"}, FakeStatusService(known=set())
    )

    assert result["success"] is False
    assert "gone" in result["error"]


@pytest.mark.asyncio
async def test_overdue_notification() -> None:
    ok = await handle_overdue_notification({"taskId": "t1", "userId": "u1", "title": "Report"})
    bad = await handle_overdue_notification({"userId": "u1"})

    assert ok == {"success": True, "taskId": "t1"}
    assert bad["success"] is False


def test_failed_job_is_retried_with_growing_countdown() -> None:
    policy = RetryPolicy(attempts=3, delay_ms=1000)

    for retries, expected in [(0, 1.0), (1, 2.0)]:
        task = FakeCeleryTask(retries=retries)
        with pytest.raises(_Retry):
            _retry_or_drop(task, policy, RuntimeError("db down"))
        assert task.retry_calls[0]["countdown"] == expected
        assert task.retry_calls[0]["max_retries"] == 2


def test_job_is_dropped_after_last_attempt() -> None:
    task = FakeCeleryTask(retries=2)

    result = _retry_or_drop(task, RetryPolicy(attempts=3), RuntimeError("db down"))

    assert result == {"success": False, "error": "db down"}
    assert task.retry_calls == []


@pytest.mark.asyncio
async def test_overdue_scan_queues_one_job_per_overdue_task(repo) -> None:
    now = get_utc_now()
    for i in range(3):
        await repo.add(make_task(f"late-{i}", due_date=now - timedelta(days=1, minutes=i)))
    await repo.add(make_task("done", due_date=now - timedelta(days=2), status=TaskStatus.COMPLETED))
    await repo.add(make_task("future", due_date=now + timedelta(days=1)))
    await repo.add(make_task("no-due-date"))
    dispatcher = FakeDispatcher(fail_for={"late-1"})

    counts = await queue_overdue_notifications(repo, dispatcher, batch_size=2, now=now)

    assert counts == {"queued": 2, "failed": 1}
    assert {j.payload["taskId"] for j in dispatcher.submitted} == {"late-0", "late-2"}
    assert all(j.job_type is JobType.OVERDUE_NOTIFY for j in dispatcher.submitted)
    assert dispatcher.submitted[0].payload["userId"] == "u1"
