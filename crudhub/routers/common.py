from typing import Optional, TypeVar

from fastapi import HTTPException, status

from crudhub.operations import Failure, QueryResult

T = TypeVar("T")


def unwrap(result: QueryResult[T]) -> T:
    """Return the payload of a Success; a Failure becomes a 500 with the safe message."""
    if isinstance(result, Failure):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.message
        )
    return result.data


def found(result: QueryResult[Optional[T]], resource: str) -> T:
    """Like unwrap, but an empty id-scoped result becomes a 404."""
    data = unwrap(result)
    if data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found"
        )
    return data
