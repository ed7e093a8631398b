from fastapi import APIRouter, Response, status

from crudhub.context import ContextDep
from crudhub.models import UserCreate
from crudhub.operations import Success
from crudhub.routers.common import found, unwrap

router = APIRouter(prefix="/users", tags=["users"])


def _mark_cache(response: Response, result) -> None:
    if isinstance(result, Success):
        response.headers["X-Cache"] = "HIT" if result.cached else "MISS"


@router.get("")
async def list_users(response: Response, ctx: ContextDep):
    result = await ctx.users.list_users()
    _mark_cache(response, result)
    return {"success": True, "users": unwrap(result)}


@router.get("/{user_id}")
async def get_user(user_id: int, response: Response, ctx: ContextDep):
    result = await ctx.users.get_user(user_id)
    _mark_cache(response, result)
    return {"success": True, "user": found(result, "User")}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreate, ctx: ContextDep):
    user = unwrap(await ctx.users.create_user(user_data.email, user_data.name))
    return {"success": True, "user": user}


@router.put("/{user_id}")
async def update_user(user_id: int, user_data: UserCreate, ctx: ContextDep):
    user = found(
        await ctx.users.update_user(user_id, user_data.email, user_data.name), "User"
    )
    return {"success": True, "user": user}


@router.delete("/{user_id}")
async def delete_user(user_id: int, ctx: ContextDep):
    deleted_id = found(await ctx.users.delete_user(user_id), "User")
    return {"success": True, "id": deleted_id}
