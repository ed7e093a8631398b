from functools import partial
from typing import Optional

from crudhub.core.config import TaskColumns
from crudhub.database import QueryExecutor
from crudhub.models import Task, to_task
from crudhub.operations import QueryResult, TaskOperation, map_first, map_rows


class TaskService:
    """Task data access. Identifiers come from validated settings only."""

    def __init__(self, db: QueryExecutor, columns: TaskColumns):
        self.db = db
        self.columns = columns
        self._to_task = partial(to_task, columns=columns)

        c = columns
        self._fields = f"{c.id}, {c.task}"
        self._returning = f"RETURNING {self._fields}"

    async def get_all_tasks(self) -> QueryResult[list[Task]]:
        c = self.columns
        result = await self.db.execute(
            TaskOperation.SELECT_TASKS,
            f"SELECT {self._fields} FROM {c.table} ORDER BY {c.id} ASC",
        )
        return map_rows(result, self._to_task)

    async def get_task(self, task_id: int) -> QueryResult[Optional[Task]]:
        c = self.columns
        result = await self.db.execute(
            TaskOperation.SELECT_TASK_BY_ID,
            f"SELECT {self._fields} FROM {c.table} WHERE {c.id} = :id",
            {"id": task_id},
        )
        return map_first(result, self._to_task)

    async def create_task(self, task: str) -> QueryResult[Optional[Task]]:
        c = self.columns
        result = await self.db.execute(
            TaskOperation.INSERT_TASK,
            f"INSERT INTO {c.table} ({c.task}) VALUES (:task) {self._returning}",
            {"task": task},
        )
        return map_first(result, self._to_task)

    async def update_task(self, task_id: int, task: str) -> QueryResult[Optional[Task]]:
        c = self.columns
        result = await self.db.execute(
            TaskOperation.UPDATE_TASK,
            f"UPDATE {c.table} SET {c.task} = :task WHERE {c.id} = :id {self._returning}",
            {"task": task, "id": task_id},
        )
        return map_first(result, self._to_task)

    async def delete_task(self, task_id: int) -> QueryResult[Optional[int]]:
        """Success(id) when a row was deleted, Success(None) when none matched."""
        c = self.columns
        result = await self.db.execute(
            TaskOperation.DELETE_TASK,
            f"DELETE FROM {c.table} WHERE {c.id} = :id RETURNING {c.id}",
            {"id": task_id},
        )
        return map_first(result, lambda row: row[c.id])
