import pytest
from pydantic import ValidationError

from crudhub.core.config import (
    FeatureFlags,
    Settings,
    cache_allowed,
    delete_allowed,
    edit_allowed,
    get_settings,
    reload_settings,
)


def test_feature_flags_read_from_environment(monkeypatch):
    monkeypatch.setenv("FEATURE_REDIS_CACHE", "true")
    monkeypatch.setenv("FEATURE_EDIT_TASK", "true")
    monkeypatch.delenv("FEATURE_DELETE_TASK", raising=False)

    flags = Settings(_env_file=None).feature_flags

    assert flags == FeatureFlags(redis_cache=True, edit_task=True, delete_task=False)
    assert cache_allowed(flags) and edit_allowed(flags)
    assert not delete_allowed(flags)


def test_flags_are_immutable():
    flags = FeatureFlags()
    with pytest.raises(AttributeError):
        flags.redis_cache = True


def test_defaults_match_reference_configuration():
    settings = Settings(_env_file=None)

    assert settings.db_pool_timeout == 10.0
    assert settings.redis_ttl == 60
    assert settings.task_columns.table == "main_table"
    assert settings.user_columns.email == "email"


def test_database_url_built_from_parts():
    settings = Settings(
        _env_file=None, db_user="app", db_password="pw", db_host="db", db_name="crud"
    )
    assert settings.sqlalchemy_url == "postgresql+asyncpg://app:pw@db:5432/crud"

    explicit = Settings(_env_file=None, database_url="sqlite+aiosqlite:///x.db")
    assert explicit.sqlalchemy_url == "sqlite+aiosqlite:///x.db"


def test_redis_url():
    assert Settings(_env_file=None).redis_url == "redis://localhost:6379/0"
    assert (
        Settings(_env_file=None, redis_password="secret", redis_host="cache").redis_url
        == "redis://:secret@cache:6379/0"
    )


@pytest.mark.parametrize(
    "field,value",
    [
        ("db_table", "users; DROP TABLE users"),
        ("db_column_task", "task name"),
        ("db_users_column_email", "1email"),
        ("db_users_table", ""),
    ],
)
def test_unsafe_identifiers_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_reload_settings(monkeypatch):
    monkeypatch.setenv("REDIS_TTL", "5")
    first = reload_settings()
    monkeypatch.setenv("REDIS_TTL", "7")

    assert get_settings() is first
    assert reload_settings().redis_ttl == 7

    get_settings.cache_clear()
