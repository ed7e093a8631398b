from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar, Union

T = TypeVar("T")


class DatabaseOperation(str, Enum):
    """
    Base for the per-service operation enums.

    Member names follow VERB_RESOURCE[_BY_ID]; the verb and the resource noun
    drive the user-facing failure message and the metric/log labels.
    """

    @property
    def resource(self) -> str:
        raise NotImplementedError

    @property
    def verb(self) -> str:
        return self.name.split("_", 1)[0]

    @property
    def is_read(self) -> bool:
        return self.verb == "SELECT"

    @property
    def is_collection_read(self) -> bool:
        return self.is_read and not self.name.endswith("_BY_ID")

    @property
    def failure_message(self) -> str:
        if self.is_read:
            action = "fetch"
        elif self.verb == "UPDATE":
            action = "edit"
        elif self.verb == "DELETE":
            action = "delete"
        else:
            action = "add"
        noun = f"{self.resource}s" if self.is_collection_read else self.resource
        return f"Failed to {action} {noun}"

    def __str__(self) -> str:
        return self.value


class TaskOperation(DatabaseOperation):
    SELECT_TASKS = "SELECT_TASKS"
    SELECT_TASK_BY_ID = "SELECT_TASK_BY_ID"
    INSERT_TASK = "INSERT_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    DELETE_TASK = "DELETE_TASK"

    @property
    def resource(self) -> str:
        return "task"


class UserOperation(DatabaseOperation):
    SELECT_USERS = "SELECT_USERS"
    SELECT_USER_BY_ID = "SELECT_USER_BY_ID"
    INSERT_USER = "INSERT_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"

    @property
    def resource(self) -> str:
        return "user"


DATABASE_UNAVAILABLE = "database unavailable"


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T
    cached: bool = False


@dataclass(frozen=True)
class Failure:
    message: str
    error_detail: str


QueryResult = Union[Success[T], Failure]


def map_rows(
    result: QueryResult[Sequence[Any]], convert: Callable[[Any], T]
) -> QueryResult[list[T]]:
    """Convert every returned row; failures pass through untouched."""
    if isinstance(result, Failure):
        return result
    return Success([convert(row) for row in result.data])


def map_first(
    result: QueryResult[Sequence[Any]], convert: Callable[[Any], T]
) -> QueryResult[Optional[T]]:
    """Convert the first returned row, or None when nothing matched."""
    if isinstance(result, Failure):
        return result
    if not result.data:
        return Success(None)
    return Success(convert(result.data[0]))
