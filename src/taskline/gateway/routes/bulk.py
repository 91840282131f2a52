"""批量操作路由

POST /api/bulk/update   批量更新
POST /api/bulk/trash    批量移入回收站
POST /api/bulk/restore  批量恢复
POST /api/bulk/delete   批量永久删除
POST /api/bulk/tag      批量追加标签

不保证原子性：始终返回 200，逐项结果见 items，失败 id 汇总在 failed。
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Actor, BulkItemResult, BulkResult

from ..deps import get_actor, get_manager
from .tasks import TaskFields

router = APIRouter()


class BulkIdsRequest(BaseModel):
    ids: list[str] = Field(min_length=1)


class BulkUpdateRequest(BulkIdsRequest):
    changes: TaskFields


class BulkTagRequest(BulkIdsRequest):
    tag_id: str = Field(min_length=1)


class BulkResponse(BaseModel):
    items: list[BulkItemResult]
    succeeded: list[str]
    failed: list[str]


def _to_response(result: BulkResult) -> BulkResponse:
    return BulkResponse(
        items=result.items,
        succeeded=result.succeeded,
        failed=result.failed,
    )


@router.post("/api/bulk/update", response_model=BulkResponse)
async def bulk_update(
    body: BulkUpdateRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return _to_response(await manager.bulk_update(actor, body.ids, body.changes))


@router.post("/api/bulk/trash", response_model=BulkResponse)
async def bulk_trash(
    body: BulkIdsRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return _to_response(await manager.bulk_move_to_trash(actor, body.ids))


@router.post("/api/bulk/restore", response_model=BulkResponse)
async def bulk_restore(
    body: BulkIdsRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return _to_response(await manager.bulk_restore(actor, body.ids))


@router.post("/api/bulk/delete", response_model=BulkResponse)
async def bulk_delete(
    body: BulkIdsRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return _to_response(await manager.bulk_permanent_delete(actor, body.ids))


@router.post("/api/bulk/tag", response_model=BulkResponse)
async def bulk_tag(
    body: BulkTagRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return _to_response(await manager.bulk_add_tag(actor, body.ids, body.tag_id))
