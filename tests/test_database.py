import logging

import pytest
from sqlalchemy import text

from crudhub.core.metrics import MetricsRegistry
from crudhub.database import PoolMetricsHooks, QueryExecutor, create_engine
from crudhub.operations import (
    DATABASE_UNAVAILABLE,
    Failure,
    Success,
    TaskOperation,
    UserOperation,
)


def _outcomes(metrics: MetricsRegistry, operation) -> tuple:
    label = str(operation)
    return (
        metrics.sample(
            "database_operations_total", {"operation": label, "status": "success"}
        ),
        metrics.sample(
            "database_operations_total", {"operation": label, "status": "error"}
        ),
        metrics.sample(
            "database_operation_duration_seconds_count", {"operation": label}
        ),
    )


class TestFailureMessages:
    @pytest.mark.parametrize(
        "operation,message",
        [
            (TaskOperation.SELECT_TASKS, "Failed to fetch tasks"),
            (TaskOperation.SELECT_TASK_BY_ID, "Failed to fetch task"),
            (TaskOperation.INSERT_TASK, "Failed to add task"),
            (TaskOperation.UPDATE_TASK, "Failed to edit task"),
            (TaskOperation.DELETE_TASK, "Failed to delete task"),
            (UserOperation.SELECT_USERS, "Failed to fetch users"),
            (UserOperation.SELECT_USER_BY_ID, "Failed to fetch user"),
            (UserOperation.INSERT_USER, "Failed to add user"),
            (UserOperation.UPDATE_USER, "Failed to edit user"),
            (UserOperation.DELETE_USER, "Failed to delete user"),
        ],
    )
    def test_message_derived_from_operation(self, operation, message):
        assert operation.failure_message == message

    def test_operation_sets_are_disjoint(self):
        task_names = {op.value for op in TaskOperation}
        user_names = {op.value for op in UserOperation}
        assert not task_names & user_names

    def test_str_is_the_label(self):
        assert str(UserOperation.INSERT_USER) == "INSERT_USER"


class TestQueryExecutor:
    async def test_success_counts_once(self, context, metrics):
        result = await context.db.execute(
            TaskOperation.INSERT_TASK,
            "INSERT INTO main_table (task) VALUES (:task) RETURNING id, task",
            {"task": "write tests"},
        )

        assert isinstance(result, Success)
        assert result.data[0]["task"] == "write tests"
        assert _outcomes(metrics, TaskOperation.INSERT_TASK) == (1.0, None, 1.0)

    async def test_empty_result_is_success(self, context, metrics):
        result = await context.db.execute(
            TaskOperation.SELECT_TASK_BY_ID,
            "SELECT id, task FROM main_table WHERE id = :id",
            {"id": 999},
        )

        assert result == Success([])
        assert _outcomes(metrics, TaskOperation.SELECT_TASK_BY_ID) == (1.0, None, 1.0)

    async def test_statement_failure_returns_failure(self, context, metrics, caplog):
        caplog.set_level(logging.INFO)

        result = await context.db.execute(
            UserOperation.SELECT_USERS, "SELECT id FROM no_such_table"
        )

        assert isinstance(result, Failure)
        assert result.message == "Failed to fetch users"
        assert "no_such_table" in result.error_detail
        assert _outcomes(metrics, UserOperation.SELECT_USERS) == (None, 1.0, 1.0)

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert errors[0].context["query"] == "SELECT_USERS"
        assert "no_such_table" in errors[0].context["error"]

        starts = [r for r in caplog.records if r.getMessage() == "Calling database"]
        assert [r.context["query"] for r in starts] == ["SELECT_USERS"]

    async def test_constraint_violation(self, context, metrics):
        statement = (
            "INSERT INTO users (email, name) VALUES (:email, :name) "
            "RETURNING id, email, name"
        )
        params = {"email": "a@x.com", "name": "A"}
        assert isinstance(
            await context.db.execute(UserOperation.INSERT_USER, statement, params),
            Success,
        )

        result = await context.db.execute(UserOperation.INSERT_USER, statement, params)

        assert isinstance(result, Failure)
        assert result.message == "Failed to add user"
        assert _outcomes(metrics, UserOperation.INSERT_USER) == (1.0, 1.0, 2.0)

    async def test_values_are_bound_not_interpolated(self, context):
        hostile = "x'); DROP TABLE main_table; --"
        await context.db.execute(
            TaskOperation.INSERT_TASK,
            "INSERT INTO main_table (task) VALUES (:task) RETURNING id, task",
            {"task": hostile},
        )

        result = await context.db.execute(
            TaskOperation.SELECT_TASKS, "SELECT id, task FROM main_table"
        )

        assert isinstance(result, Success)
        assert [row["task"] for row in result.data] == [hostile]

    async def test_connection_failure_is_database_unavailable(
        self, make_settings, metrics, tmp_path
    ):
        settings = make_settings(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'db.sqlite'}"
        )
        executor = QueryExecutor(create_engine(settings), metrics)

        result = await executor.execute(
            TaskOperation.SELECT_TASKS, "SELECT id, task FROM main_table"
        )
        await executor.dispose()

        assert isinstance(result, Failure)
        assert result.message == DATABASE_UNAVAILABLE
        assert result.error_detail
        assert _outcomes(metrics, TaskOperation.SELECT_TASKS) == (None, 1.0, 1.0)

    async def test_exhausted_pool_is_database_unavailable(self, make_settings, metrics):
        settings = make_settings(db_pool_size=1, db_max_overflow=0, db_pool_timeout=0.2)
        engine = create_engine(settings)
        executor = QueryExecutor(engine, metrics)

        async with engine.connect() as held:
            await held.execute(text("SELECT 1"))
            result = await executor.execute(TaskOperation.SELECT_TASKS, "SELECT 1")
        await executor.dispose()

        assert isinstance(result, Failure)
        assert result.message == DATABASE_UNAVAILABLE
        assert "QueuePool limit" in result.error_detail
        assert _outcomes(metrics, TaskOperation.SELECT_TASKS) == (None, 1.0, 1.0)

    async def test_ping(self, context):
        await context.db.ping()


class TestPoolMetricsHooks:
    def test_unbound_hooks_are_noops(self):
        hooks = PoolMetricsHooks()
        hooks.on_connect()
        hooks.on_remove()
        assert hooks.metrics is None

    def test_gauge_tracks_connects_minus_removes(self, metrics):
        hooks = PoolMetricsHooks()
        hooks.on_connect()  # before bind: ignored
        hooks.bind(metrics)

        for _ in range(5):
            hooks.on_connect()
        for _ in range(3):
            hooks.on_remove()

        assert metrics.sample("database_connections_active") == 2.0

    async def test_gauge_follows_real_pool(self, make_settings, metrics):
        engine = create_engine(make_settings())
        hooks = PoolMetricsHooks(metrics)
        hooks.attach(engine)

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        assert metrics.sample("database_connections_active") == 1.0

        await engine.dispose()
        assert metrics.sample("database_connections_active") == 0.0

        hooks.detach(engine)
