"""任务路由

POST   /api/tasks                        创建任务
GET    /api/tasks                        按视图列出任务（active/archive/trash/all）
GET    /api/tasks/{task_id}              任务详情
PATCH  /api/tasks/{task_id}              更新任务
POST   /api/tasks/{task_id}/archive      归档
POST   /api/tasks/{task_id}/restore      从归档/回收站恢复
POST   /api/tasks/{task_id}/trash        移入回收站
DELETE /api/tasks/{task_id}              永久删除
POST   /api/trash/empty                  清空回收站
POST   /api/archive/empty                归档全部移入回收站
GET    /api/tasks/{task_id}/occurrences  未来的虚拟 occurrence
GET|POST /api/tasks/{task_id}/comments   评论
GET|POST /api/tasks/{task_id}/time-logs  工时
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import Response
from taskline.core.config import MAX_VIRTUAL_OCCURRENCES
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import (
    Actor,
    Comment,
    RecurrencePattern,
    Task,
    TaskStatus,
    TaskView,
    TimeLog,
)
from taskline.core.recurrence import VirtualOccurrence

from ..deps import get_actor, get_manager

router = APIRouter()


class TaskFields(BaseModel):
    """可写字段（均为可选，未提交的字段不修改）"""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: str | None = None
    type: str | None = None
    due_date: date | None = None
    scheduled_time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = Field(default=None, ge=0)
    agenda: str | None = None
    recurrence: RecurrencePattern | None = None
    recurrence_end: date | None = None
    team_id: str | None = None
    assigned_to: str | None = None
    blocked_reason: str | None = None
    category_id: str | None = None
    project_id: str | None = None
    context_id: str | None = None
    tags: list[str] | None = None


class TaskCreateRequest(TaskFields):
    """创建任务请求"""

    title: str = Field(min_length=1)


class TaskListResponse(BaseModel):
    tasks: list[Task]


class CountResponse(BaseModel):
    count: int


class OccurrenceListResponse(BaseModel):
    occurrences: list[VirtualOccurrence]


class CommentRequest(BaseModel):
    content: str = Field(min_length=1)


class CommentListResponse(BaseModel):
    comments: list[Comment]


class TimeLogRequest(BaseModel):
    minutes: int = Field(ge=0)
    note: str | None = None


class TimeLogListResponse(BaseModel):
    time_logs: list[TimeLog]


@router.post("/api/tasks", status_code=201, response_model=Task)
async def create_task(
    body: TaskCreateRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    """创建任务；tags 未提交时为空列表"""
    return await manager.create(actor, body)


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    view: TaskView = Query(default=TaskView.ACTIVE, description="列表视图"),
    context_id: str | None = Query(default=None, description="按工作区筛选"),
    type: str | None = Query(default=None, description="按类型筛选"),
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    """按视图查询操作者的任务，按 created_at 倒序"""
    tasks = await manager.list_tasks(actor, view, context_id, type, status)
    return TaskListResponse(tasks=tasks)


@router.get("/api/tasks/{task_id}", response_model=Task)
async def get_task(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.get(actor, task_id)


@router.patch("/api/tasks/{task_id}", response_model=Task)
async def update_task(
    task_id: str,
    body: TaskFields,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    """部分更新；status 进入 done 时触发 recurrence 与完成通知"""
    return await manager.update(actor, task_id, body)


@router.post("/api/tasks/{task_id}/archive", response_model=Task)
async def archive_task(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.archive(actor, task_id)


@router.post("/api/tasks/{task_id}/restore", response_model=Task)
async def restore_task(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.restore(actor, task_id)


@router.post("/api/tasks/{task_id}/trash", response_model=Task)
async def trash_task(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.move_to_trash(actor, task_id)


@router.delete("/api/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    await manager.permanent_delete(actor, task_id)
    return Response(status_code=204)


@router.post("/api/trash/empty", response_model=CountResponse)
async def empty_trash(
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return CountResponse(count=await manager.empty_trash(actor))


@router.post("/api/archive/empty", response_model=CountResponse)
async def empty_archive(
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return CountResponse(count=await manager.empty_archive(actor))


@router.get("/api/tasks/{task_id}/occurrences", response_model=OccurrenceListResponse)
async def list_occurrences(
    task_id: str,
    limit: int = Query(default=MAX_VIRTUAL_OCCURRENCES, ge=1, le=MAX_VIRTUAL_OCCURRENCES),
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    occurrences = await manager.upcoming_occurrences(actor, task_id, limit)
    return OccurrenceListResponse(occurrences=occurrences)


@router.get("/api/tasks/{task_id}/comments", response_model=CommentListResponse)
async def list_comments(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return CommentListResponse(comments=await manager.list_comments(actor, task_id))


@router.post("/api/tasks/{task_id}/comments", status_code=201, response_model=Comment)
async def add_comment(
    task_id: str,
    body: CommentRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.add_comment(actor, task_id, body.content)


@router.get("/api/tasks/{task_id}/time-logs", response_model=TimeLogListResponse)
async def list_time_logs(
    task_id: str,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return TimeLogListResponse(time_logs=await manager.list_time_logs(actor, task_id))


@router.post("/api/tasks/{task_id}/time-logs", status_code=201, response_model=TimeLog)
async def log_time(
    task_id: str,
    body: TimeLogRequest,
    actor: Actor | None = Depends(get_actor),
    manager: TaskLifecycleManager = Depends(get_manager),
):
    return await manager.log_time(actor, task_id, body.minutes, body.note)
