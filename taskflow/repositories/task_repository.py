from datetime import datetime
from typing import AsyncIterator, Sequence

from sqlalchemy import case, delete, func, or_, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskflow.models import Task, TaskFilter, TaskPriority, TaskStats, TaskStatus, get_utc_now


class TaskRepository:
    """
    Task store backed by SQLModel.

    Bulk writes run as a single UPDATE/DELETE ... WHERE id IN (...) statement
    and commit once, so a batch is applied entirely or not at all.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, task_id: str) -> Task | None:
        return await self.db.get(Task, task_id)

    async def get_many(self, task_ids: Sequence[str]) -> dict[str, Task]:
        result = await self.db.exec(select(Task).where(col(Task.id).in_(list(task_ids))))
        return {task.id: task for task in result.all()}

    async def add(self, task: Task) -> Task:
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        return task

    async def save(self, task: Task) -> Task:
        task.updated_at = get_utc_now()
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        return task

    async def remove(self, task: Task) -> None:
        await self.db.delete(task)
        await self.db.commit()

    def _filtered(self, flt: TaskFilter):
        query = select(Task)
        if flt.status:
            query = query.where(Task.status == flt.status)
        if flt.priority:
            query = query.where(Task.priority == flt.priority)
        if flt.user_id:
            query = query.where(Task.user_id == flt.user_id)
        if flt.search:
            pattern = f"%{flt.search}%"
            query = query.where(
                or_(col(Task.title).ilike(pattern), col(Task.description).ilike(pattern))
            )
        if flt.created_after:
            query = query.where(col(Task.created_at) >= flt.created_after)
        if flt.created_before:
            query = query.where(col(Task.created_at) <= flt.created_before)
        if flt.due_after:
            query = query.where(col(Task.due_date) >= flt.due_after)
        if flt.due_before:
            query = query.where(col(Task.due_date) <= flt.due_before)
        return query

    async def find_page(self, flt: TaskFilter) -> tuple[list[Task], int]:
        """Return one page of tasks (newest first) and the total match count."""
        query = self._filtered(flt)

        total = (await self.db.exec(select(func.count()).select_from(query.subquery()))).one()

        skip = (flt.page - 1) * flt.limit
        query = query.order_by(col(Task.created_at).desc()).offset(skip).limit(flt.limit)
        result = await self.db.exec(query)
        return list(result.all()), total

    async def bulk_update_status(self, task_ids: Sequence[str], status: TaskStatus) -> int:
        result = await self.db.execute(
            update(Task)
            .where(col(Task.id).in_(list(task_ids)))
            .values(status=status, updated_at=get_utc_now())
        )
        await self.db.commit()
        return result.rowcount

    async def bulk_delete(self, task_ids: Sequence[str]) -> int:
        result = await self.db.execute(delete(Task).where(col(Task.id).in_(list(task_ids))))
        await self.db.commit()
        return result.rowcount

    async def stats(self, user_id: str | None = None) -> TaskStats:
        def count_where(condition):
            return func.count(case((condition, 1)))

        query = select(
            func.count(),
            count_where(Task.status == TaskStatus.COMPLETED),
            count_where(Task.status == TaskStatus.IN_PROGRESS),
            count_where(Task.status == TaskStatus.PENDING),
            count_where(Task.priority == TaskPriority.HIGH),
        ).select_from(Task)
        if user_id:
            query = query.where(Task.user_id == user_id)

        total, completed, in_progress, pending, high = (await self.db.exec(query)).one()
        return TaskStats(
            total=total,
            completed=completed,
            in_progress=in_progress,
            pending=pending,
            high_priority=high,
        )

    async def stream_overdue(
        self, now: datetime, batch_size: int = 100
    ) -> AsyncIterator[list[Task]]:
        """Yield tasks past their due date that are not completed, batch by batch."""
        query = (
            select(Task)
            .where(col(Task.due_date) < now)
            .where(Task.status != TaskStatus.COMPLETED)
            .order_by(col(Task.due_date), col(Task.id))
        )
        offset = 0
        while True:
            batch = list((await self.db.exec(query.offset(offset).limit(batch_size))).all())
            if not batch:
                return
            yield batch
            if len(batch) < batch_size:
                return
            offset += batch_size
