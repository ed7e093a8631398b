from functools import wraps
from typing import Any, Callable, Optional

from pydantic import ValidationError

from crudhub.operations import Success

# A stored value that no longer fits the model is treated as a miss
DECODE_ERRORS = (ValidationError, ValueError, TypeError)


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def cached_result(
    key_builder: Callable[..., str],
    decode: Callable[[Any], Any],
    ttl: Optional[int] = None,
):
    """
    Decorator for async service methods returning a QueryResult.
    The instance must expose a CacheLayer as ``self.cache``; key_builder
    receives the same args/kwargs as the method (without self).

    Only Success results with data are cached. A cache hit is rebuilt with
    ``decode`` and returned as ``Success(..., cached=True)``. A hit that
    ``decode`` rejects is discarded and the method runs as on a miss.

    Example:
      @cached_result(lambda user_id: f"users:{user_id}", decode=User.model_validate)
      async def get_user(self, user_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            key = key_builder(*args, **kwargs)
            outcome = None

            # loader closure calls the wrapped method and keeps its result
            async def loader():
                nonlocal outcome
                outcome = await fn(self, *args, **kwargs)
                if isinstance(outcome, Success) and outcome.data is not None:
                    return _jsonable(outcome.data)
                return None

            value, cached = await self.cache.get_or_load(key, loader, ttl)
            if not cached:
                return outcome
            try:
                return Success(decode(value), cached=True)
            except DECODE_ERRORS as e:
                await self.cache.discard(key, error=str(e))
                return await fn(self, *args, **kwargs)

        return wrapper

    return decorator


def invalidates(pattern: str):
    """Drop every cache key matching ``pattern`` after a successful write."""

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            result = await fn(self, *args, **kwargs)
            if isinstance(result, Success):
                await self.cache.invalidate(pattern)
            return result

        return wrapper

    return decorator
