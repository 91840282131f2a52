"""阻塞关系路由

GET    /api/tasks/{task_id}/blockers  阻塞该任务的边
POST   /api/tasks/{task_id}/blockers  添加阻塞方（自阻塞、重复、成环返回 422）
GET    /api/tasks/{task_id}/blocked   被该任务阻塞的边
DELETE /api/blockers/{edge_id}        删除边
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.responses import Response
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Actor, Dependency

from ..deps import get_actor, get_manager

router = APIRouter()


class AddBlockerRequest(BaseModel):
    blocker_id: str = Field(min_length=1, description="阻塞方任务 ID")


class DependencyListResponse(BaseModel):
    dependencies: list[Dependency]


@router.get("/api/tasks/{task_id}/blockers", response_model=DependencyListResponse)
async def list_blockers(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return DependencyListResponse(dependencies=await manager.get_blockers(actor, task_id))


@router.post("/api/tasks/{task_id}/blockers", status_code=201, response_model=Dependency)
async def add_blocker(
    task_id: str,
    body: AddBlockerRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.add_blocker(actor, task_id, body.blocker_id)


@router.get("/api/tasks/{task_id}/blocked", response_model=DependencyListResponse)
async def list_blocked(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return DependencyListResponse(
        dependencies=await manager.get_blocked_tasks(actor, task_id)
    )


@router.delete("/api/blockers/{edge_id}", status_code=204)
async def remove_blocker(
    edge_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    await manager.remove_blocker(actor, edge_id)
    return Response(status_code=204)
