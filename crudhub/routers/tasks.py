from fastapi import APIRouter, Depends, HTTPException, status

from crudhub.context import ContextDep
from crudhub.core.config import delete_allowed, edit_allowed
from crudhub.core.logging_config import get_logger
from crudhub.models import TaskCreate
from crudhub.routers.common import found, unwrap

logger = get_logger(__name__)


def require_edit(ctx: ContextDep):
    if not edit_allowed(ctx.flags):
        logger.warning("Edit task feature is disabled")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Edit task feature is disabled",
        )


def require_delete(ctx: ContextDep):
    if not delete_allowed(ctx.flags):
        logger.warning("Delete task feature is disabled")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Delete task feature is disabled",
        )


router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("")
async def get_tasks(ctx: ContextDep):
    tasks = unwrap(await ctx.tasks.get_all_tasks())
    return {"success": True, "tasks": tasks}


@router.get("/{task_id}")
async def get_task(task_id: int, ctx: ContextDep):
    """Get a specific task by ID"""
    task = found(await ctx.tasks.get_task(task_id), "Task")
    return {"success": True, "task": task}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(task_data: TaskCreate, ctx: ContextDep):
    """Create a new task"""
    task = unwrap(await ctx.tasks.create_task(task_data.task))
    logger.info("Task added", task_id=task.id)
    return {"success": True, "message": "Task added successfully", "task": task}


@router.put("/{task_id}", dependencies=[Depends(require_edit)])
async def update_task(task_id: int, task_data: TaskCreate, ctx: ContextDep):
    task = found(await ctx.tasks.update_task(task_id, task_data.task), "Task")
    logger.info("Task updated", task_id=task_id)
    return {"success": True, "message": "Task updated successfully", "task": task}


@router.delete("/{task_id}", dependencies=[Depends(require_delete)])
async def delete_task(task_id: int, ctx: ContextDep):
    """Delete a task"""
    deleted_id = found(await ctx.tasks.delete_task(task_id), "Task")
    logger.info("Task deleted", task_id=task_id)
    return {"success": True, "message": "Task deleted successfully", "id": deleted_id}
