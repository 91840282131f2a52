"""团队 pool 路由

GET  /api/teams/{team_id}/pool     待认领任务列表
POST /api/teams/{team_id}/pool     创建 pool 任务
POST /api/tasks/{task_id}/claim    认领（并发认领只有一方成功，失败 409）
POST /api/tasks/{task_id}/release  释放回 pool（仅负责人，可附原因）
"""

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Actor, Task

from ..deps import get_actor, get_manager
from .tasks import TaskCreateRequest, TaskListResponse

router = APIRouter()


class ReleaseRequest(BaseModel):
    reason: str | None = None


@router.get("/api/teams/{team_id}/pool", response_model=TaskListResponse)
async def list_pool(
    team_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return TaskListResponse(tasks=await manager.list_pool_tasks(actor, team_id))


@router.post("/api/teams/{team_id}/pool", status_code=201, response_model=Task)
async def create_pool_task(
    team_id: str,
    body: TaskCreateRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    """status 固定为 unassigned，忽略请求中的负责人"""
    return await manager.create_pool_task(actor, body, team_id)


@router.post("/api/tasks/{task_id}/claim", response_model=Task)
async def claim_task(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.claim_task(actor, task_id)


@router.post("/api/tasks/{task_id}/release", response_model=Task)
async def release_task(
    task_id: str,
    body: ReleaseRequest | None = Body(default=None),
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    reason = body.reason if body is not None else None
    return await manager.release_task(actor, task_id, reason)
