from typing import Any, Mapping

from sqlmodel import Field, SQLModel

from crudhub.core.config import TaskColumns, UserColumns


class TaskBase(SQLModel):
    """Base model with shared fields"""

    task: str = Field(min_length=1)


class Task(TaskBase):
    """Task record as returned by the service"""

    id: int


class TaskCreate(TaskBase):
    """Schema for creating or editing a task"""

    pass


class UserBase(SQLModel):
    email: str = Field(min_length=3, max_length=320)
    name: str = Field(min_length=1, max_length=200)


class User(UserBase):
    """User record as returned by the service"""

    id: int


class UserCreate(UserBase):
    """Schema for creating or replacing a user"""

    pass


def to_task(row: Mapping[str, Any], columns: TaskColumns) -> Task:
    """Map a raw row keyed by configured column names onto a Task."""
    return Task(id=row[columns.id], task=row[columns.task])


def to_user(row: Mapping[str, Any], columns: UserColumns) -> User:
    """Map a raw row keyed by configured column names onto a User."""
    return User(id=row[columns.id], email=row[columns.email], name=row[columns.name])
