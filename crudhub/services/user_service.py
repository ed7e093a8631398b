from functools import partial
from typing import Optional

from crudhub.cache.decorators import cached_result, invalidates
from crudhub.cache.layer import CacheLayer
from crudhub.core.config import UserColumns
from crudhub.database import QueryExecutor
from crudhub.models import User, to_user
from crudhub.operations import QueryResult, UserOperation, map_first, map_rows

USERS_COLLECTION_KEY = "users:all"
# Covers the collection key and every per-user key
USERS_KEY_PATTERN = "users:*"


def user_key(user_id: int) -> str:
    return f"users:{user_id}"


def _decode_users(value) -> list[User]:
    return [User.model_validate(item) for item in value]


class UserService:
    """User data access with the Redis cache-aside layer in front of reads."""

    def __init__(self, db: QueryExecutor, columns: UserColumns, cache: CacheLayer):
        self.db = db
        self.columns = columns
        self.cache = cache
        self._to_user = partial(to_user, columns=columns)

        c = columns
        self._fields = f"{c.id}, {c.email}, {c.name}"
        self._returning = f"RETURNING {self._fields}"

    @cached_result(lambda: USERS_COLLECTION_KEY, decode=_decode_users)
    async def list_users(self) -> QueryResult[list[User]]:
        c = self.columns
        result = await self.db.execute(
            UserOperation.SELECT_USERS,
            f"SELECT {self._fields} FROM {c.table} ORDER BY {c.id} ASC",
        )
        return map_rows(result, self._to_user)

    @cached_result(user_key, decode=User.model_validate)
    async def get_user(self, user_id: int) -> QueryResult[Optional[User]]:
        c = self.columns
        result = await self.db.execute(
            UserOperation.SELECT_USER_BY_ID,
            f"SELECT {self._fields} FROM {c.table} WHERE {c.id} = :id",
            {"id": user_id},
        )
        return map_first(result, self._to_user)

    @invalidates(USERS_KEY_PATTERN)
    async def create_user(self, email: str, name: str) -> QueryResult[Optional[User]]:
        c = self.columns
        result = await self.db.execute(
            UserOperation.INSERT_USER,
            f"INSERT INTO {c.table} ({c.email}, {c.name}) "
            f"VALUES (:email, :name) {self._returning}",
            {"email": email, "name": name},
        )
        return map_first(result, self._to_user)

    @invalidates(USERS_KEY_PATTERN)
    async def update_user(
        self, user_id: int, email: str, name: str
    ) -> QueryResult[Optional[User]]:
        c = self.columns
        result = await self.db.execute(
            UserOperation.UPDATE_USER,
            f"UPDATE {c.table} SET {c.email} = :email, {c.name} = :name "
            f"WHERE {c.id} = :id {self._returning}",
            {"email": email, "name": name, "id": user_id},
        )
        return map_first(result, self._to_user)

    @invalidates(USERS_KEY_PATTERN)
    async def delete_user(self, user_id: int) -> QueryResult[Optional[int]]:
        """Success(id) when a row was deleted, Success(None) when none matched."""
        c = self.columns
        result = await self.db.execute(
            UserOperation.DELETE_USER,
            f"DELETE FROM {c.table} WHERE {c.id} = :id RETURNING {c.id}",
            {"id": user_id},
        )
        return map_first(result, lambda row: row[c.id])
