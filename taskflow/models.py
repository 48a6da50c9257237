from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import field_validator
from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return str(uuid4())


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=200, index=True)
    description: str | None = Field(default=None)
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, index=True)
    due_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True)
    )


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: str = Field(default_factory=new_task_id, primary_key=True, max_length=36)
    user_id: str = Field(index=True, max_length=36)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    user_id: str


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None

    @field_validator("title", "status", "priority")
    @classmethod
    def not_null(cls, value):
        # omitted is fine, explicit null is not: the columns are NOT NULL
        if value is None:
            raise ValueError("must not be null")
        return value


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: str
    user_id: str
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class TaskFilter(SQLModel):
    """Query parameters for listing tasks"""

    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    user_id: str | None = None
    search: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    due_after: datetime | None = None
    due_before: datetime | None = None
    page: int = 1
    limit: int = 10


class TaskPage(SQLModel):
    items: list[TaskResponse]
    count: int
    page: int
    limit: int
    total_pages: int


class TaskStats(SQLModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    high_priority: int = 0


class Actor(SQLModel):
    """The caller a request acts on behalf of"""

    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def can_access(self, task) -> bool:
        return self.is_admin or task.user_id == self.id


class BatchAction(str, Enum):
    COMPLETE = "complete"
    DELETE = "delete"


class BatchRequest(SQLModel):
    tasks: Any
    action: str


class BatchItemResult(SQLModel):
    task_id: str
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
