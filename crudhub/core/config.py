import re
from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


@dataclass(frozen=True)
class FeatureFlags:
    """Snapshot of boolean toggles, taken once from settings."""

    redis_cache: bool = False
    edit_task: bool = False
    delete_task: bool = False


def cache_allowed(flags: FeatureFlags) -> bool:
    return flags.redis_cache


def edit_allowed(flags: FeatureFlags) -> bool:
    return flags.edit_task


def delete_allowed(flags: FeatureFlags) -> bool:
    return flags.delete_task


@dataclass(frozen=True)
class TaskColumns:
    table: str
    id: str
    task: str


@dataclass(frozen=True)
class UserColumns:
    table: str
    id: str
    email: str
    name: str


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = "development"
    log_level: str = "INFO"
    log_dir: str = "./logs"

    # Server
    host: str = "0.0.0.0"
    task_service_port: int = 3000
    user_service_port: int = 4000

    # Database
    database_url: str | None = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "postgres"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: float = 10.0  # seconds to wait for a pooled connection
    db_connect_timeout: float = 10.0

    # Task table
    db_table: str = "main_table"
    db_column_id: str = "id"
    db_column_task: str = "task"

    # User table
    db_users_table: str = "users"
    db_users_column_id: str = "id"
    db_users_column_email: str = "email"
    db_users_column_name: str = "name"

    # Redis
    redis_dsn: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_ttl: int = 60  # default cache TTL
    redis_socket_timeout: float = 0.5
    redis_pool_size: int = 5
    cache_namespace: str = "crudhub:"

    # Feature flags
    feature_redis_cache: bool = False
    feature_edit_task: bool = False
    feature_delete_task: bool = False

    @field_validator(
        "db_table",
        "db_column_id",
        "db_column_task",
        "db_users_table",
        "db_users_column_id",
        "db_users_column_email",
        "db_users_column_name",
    )
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError(f"{value!r} is not a valid SQL identifier")
        return value

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def redis_url(self) -> str:
        if self.redis_dsn:
            return self.redis_dsn
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/0"

    @property
    def feature_flags(self) -> FeatureFlags:
        return FeatureFlags(
            redis_cache=self.feature_redis_cache,
            edit_task=self.feature_edit_task,
            delete_task=self.feature_delete_task,
        )

    @property
    def task_columns(self) -> TaskColumns:
        return TaskColumns(
            table=self.db_table, id=self.db_column_id, task=self.db_column_task
        )

    @property
    def user_columns(self) -> UserColumns:
        return UserColumns(
            table=self.db_users_table,
            id=self.db_users_column_id,
            email=self.db_users_column_email,
            name=self.db_users_column_name,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()

