# tests/test_task_service.py

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from taskflow.core.errors import (
    AuthorizationError,
    InvalidPaginationError,
    NotFoundError,
    QueueSubmitError,
)
from taskflow.models import (
    Actor,
    TaskCreate,
    TaskFilter,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    get_utc_now,
)
from taskflow.queues.dispatcher import JobType
from taskflow.services.task_service import TaskService, task_key

from .fakes import FakeDispatcher, make_task

ADMIN = Actor(id="admin-1", role="admin")
OWNER = Actor(id="u1")
STRANGER = Actor(id="u2")


class RefusingDispatcher(FakeDispatcher):
    async def submit(self, job_type, payload, retry_policy=None):
        raise QueueSubmitError()


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def service(repo, dispatcher) -> TaskService:
    return TaskService(repo, dispatcher)


@pytest.mark.asyncio
async def test_repository_bulk_operations(repo) -> None:
    for task_id in ("a", "b", "c"):
        await repo.add(make_task(task_id))

    assert await repo.bulk_update_status(["a", "b"], TaskStatus.COMPLETED) == 2
    completed, _ = await repo.find_page(TaskFilter(status=TaskStatus.COMPLETED))
    assert {t.id for t in completed} == {"a", "b"}

    assert await repo.bulk_delete(["a", "c", "missing"]) == 2
    assert set(await repo.get_many(["a", "b", "c"])) == {"b"}


@pytest.mark.asyncio
async def test_repository_stats_per_user(repo) -> None:
    await repo.add(make_task("a", status=TaskStatus.COMPLETED, priority=TaskPriority.HIGH))
    await repo.add(make_task("b", status=TaskStatus.IN_PROGRESS))
    await repo.add(make_task("c"))
    await repo.add(make_task("d", user_id="u2", priority=TaskPriority.HIGH))

    mine = await repo.stats("u1")
    everyone = await repo.stats()

    assert (mine.total, mine.completed, mine.in_progress, mine.pending, mine.high_priority) == (
        3,
        1,
        1,
        1,
        1,
    )
    assert everyone.total == 4
    assert everyone.high_priority == 2


@pytest.mark.asyncio
async def test_find_page_filters_and_paginates(repo) -> None:
    now = get_utc_now()
    for i in range(5):
        created_at = now + timedelta(seconds=i)
        await repo.add(make_task(f"t{i}", title=f"Write report {i}", created_at=created_at))
    await repo.add(make_task("other", title="Buy milk", created_at=now))

    items, total = await repo.find_page(TaskFilter(search="report", page=2, limit=2))

    assert total == 5
    assert [t.id for t in items] == ["t2", "t1"]


@pytest.mark.asyncio
async def test_create_queues_initial_status(service, dispatcher, repo) -> None:
    task = await service.create(TaskCreate(title="Plan sprint", user_id="u1"))

    assert await repo.get(task.id) is not None
    assert [(j.job_type, j.payload) for j in dispatcher.submitted] == [
        (JobType.STATUS_UPDATE, {"taskId": task.id, "status": "PENDING"})
    ]


@pytest.mark.asyncio
async def test_create_is_rolled_back_when_job_cannot_be_queued(repo) -> None:
    service = TaskService(repo, RefusingDispatcher())

    with pytest.raises(QueueSubmitError):
        await service.create(TaskCreate(title="Plan sprint", user_id="u1"))

    _, total = await repo.find_page(TaskFilter())
    assert total == 0


@pytest.mark.asyncio
async def test_find_all_rejects_bad_pagination(service) -> None:
    with pytest.raises(InvalidPaginationError):
        await service.find_all(TaskFilter(page=0))


@pytest.mark.asyncio
async def test_find_all_is_cached_until_a_write(service, repo, installed_cache) -> None:
    await repo.add(make_task("t1"))
    first = await service.find_all(TaskFilter())

    await repo.add(make_task("t2"))
    cached = await service.find_all(TaskFilter())

    await service.create(TaskCreate(title="Fresh", user_id="u1"))
    fresh = await service.find_all(TaskFilter())

    assert first.count == cached.count == 1
    assert fresh.count == 3
    assert fresh.total_pages == 1


@pytest.mark.asyncio
async def test_find_one_checks_ownership(service, repo) -> None:
    await repo.add(make_task("t1"))

    assert (await service.find_one("t1", OWNER)).id == "t1"
    assert (await service.find_one("t1", ADMIN)).id == "t1"
    with pytest.raises(AuthorizationError):
        await service.find_one("t1", STRANGER)
    with pytest.raises(NotFoundError):
        await service.find_one("missing", OWNER)


@pytest.mark.asyncio
async def test_find_one_is_served_from_cache(service, repo, installed_cache) -> None:
    await repo.add(make_task("t1", title="Original"))
    await service.find_one("t1", OWNER)

    cached = await installed_cache.get(task_key("t1"))

    assert cached["title"] == "Original"


@pytest.mark.asyncio
async def test_update_queues_only_on_status_change(service, dispatcher, repo, installed_cache) -> None:
    await repo.add(make_task("t1"))
    await service.find_one("t1", OWNER)

    await service.update("t1", TaskUpdate(title="Renamed"), OWNER)
    assert dispatcher.submitted == []
    assert await installed_cache.get(task_key("t1")) is None

    await service.update("t1", TaskUpdate(status=TaskStatus.IN_PROGRESS), OWNER)
    await service.update("t1", TaskUpdate(status=TaskStatus.IN_PROGRESS), OWNER)

    assert [j.payload for j in dispatcher.submitted] == [
        {"taskId": "t1", "status": "IN_PROGRESS"}
    ]
    assert (await service.find_one("t1", OWNER)).title == "Renamed"


@pytest.mark.asyncio
async def test_update_by_stranger_is_rejected(service, repo) -> None:
    await repo.add(make_task("t1"))

    with pytest.raises(AuthorizationError):
        await service.update("t1", TaskUpdate(title="Mine now"), STRANGER)


@pytest.mark.asyncio
async def test_remove(service, repo) -> None:
    await repo.add(make_task("t1"))

    with pytest.raises(AuthorizationError):
        await service.remove("t1", STRANGER)
    await service.remove("t1", OWNER)

    assert await repo.get("t1") is None


@pytest.mark.asyncio
async def test_worker_status_update_does_not_queue_again(service, dispatcher, repo) -> None:
    await repo.add(make_task("t1"))

    task = await service.update_status("t1", TaskStatus.COMPLETED)

    assert task.status == TaskStatus.COMPLETED
    assert dispatcher.submitted == []
    with pytest.raises(NotFoundError):
        await service.update_status("missing", TaskStatus.COMPLETED)


@pytest.mark.asyncio
async def test_stats_are_scoped_to_non_admins(service, repo) -> None:
    await repo.add(make_task("t1"))
    await repo.add(make_task("t2", user_id="u2"))

    assert (await service.get_stats(OWNER)).total == 1
    assert (await service.get_stats(ADMIN)).total == 2


@pytest.mark.asyncio
async def test_update_is_reverted_when_status_job_cannot_be_queued(repo, installed_cache) -> None:
    await repo.add(make_task("t1", title="Original"))
    service = TaskService(repo, RefusingDispatcher())
    await service.find_one("t1", OWNER)

    with pytest.raises(QueueSubmitError):
        await service.update(
            "t1", TaskUpdate(title="Renamed", status=TaskStatus.COMPLETED), OWNER
        )

    stored = await repo.get("t1")
    assert stored.status == TaskStatus.PENDING
    assert stored.title == "Original"
    assert (await service.find_one("t1", OWNER)).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_update_without_status_change_ignores_queue(repo) -> None:
    await repo.add(make_task("t1"))
    service = TaskService(repo, RefusingDispatcher())

    task = await service.update("t1", TaskUpdate(priority=TaskPriority.HIGH), OWNER)

    assert task.priority == TaskPriority.HIGH


@pytest.mark.parametrize("field", ["title", "status", "priority"])
def test_update_rejects_explicit_null_for_required_fields(field) -> None:
    with pytest.raises(ValidationError):
        TaskUpdate(**{field: None})


def test_update_allows_clearing_optional_fields() -> None:
    data = TaskUpdate(description=None, due_date=None).model_dump(exclude_unset=True)

    assert data == {"description": None, "due_date": None}
