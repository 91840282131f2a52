"""Lifecycle State Machine -- status 与 soft-state 规则

status 与 soft-state 是两个独立维度：
- status 由 update 驱动，规则见 apply_status_rules()
- soft-state 由 archived_at / deleted_at 推导，deleted_at 优先

本模块只产出待写入的字段，不直接访问持久化层。
"""

from datetime import UTC, datetime
from typing import Any

from .exceptions import InvalidOperation
from .filters import FilterBuilder, Predicate
from .models.enums import SoftState, TaskStatus, TaskView
from .models.task import Task


def soft_state(task: Task) -> SoftState:
    """推导 soft-state：trashed 优先于 archived"""
    if task.deleted_at is not None:
        return SoftState.TRASHED
    if task.archived_at is not None:
        return SoftState.ARCHIVED
    return SoftState.ACTIVE


def _coerce_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError as e:
        raise InvalidOperation(f"Invalid task status: {value!r}") from e


def apply_status_rules(
    current: Task | None,
    changes: dict[str, Any],
    now: datetime | None = None,
) -> dict[str, Any]:
    """对一次写入应用状态机规则，返回补全后的字段

    - 结果 status 不是 blocked 时清空 blocked_reason
    - 由非 done 进入 done 时写入 completed_at；已是 done 的任务重复保存保留原时间戳
    - 结果 status 不是 done 时清空 completed_at

    Args:
        current: 当前记录，创建时为 None
        changes: 调用方提交的字段
        now: 当前时间（测试注入）

    Returns:
        新的字段字典（不修改入参）
    """
    now = now or datetime.now(UTC)
    result = dict(changes)
    if result.get("status") is None:
        result.pop("status", None)

    if "status" in result:
        status = _coerce_status(result["status"])
        result["status"] = status
    elif current is not None:
        status = current.status
    else:
        status = TaskStatus.TODO
        result["status"] = status

    if status is not TaskStatus.BLOCKED:
        result["blocked_reason"] = None

    if status is TaskStatus.DONE:
        if current is None or current.status is not TaskStatus.DONE:
            result["completed_at"] = now
    else:
        result["completed_at"] = None

    return result


def entered_done(previous: Task | None, updated: Task) -> bool:
    """本次写入是否将任务从非 done 推进到 done"""
    was_done = previous is not None and previous.status is TaskStatus.DONE
    return updated.status is TaskStatus.DONE and not was_done


def archive_fields(now: datetime | None = None) -> dict[str, Any]:
    return {"archived_at": now or datetime.now(UTC)}


def restore_fields() -> dict[str, Any]:
    """恢复：同时清空 archived_at 与 deleted_at"""
    return {"archived_at": None, "deleted_at": None}


def trash_fields(now: datetime | None = None) -> dict[str, Any]:
    """移入回收站：无视当前 status 与归档状态"""
    return {"deleted_at": now or datetime.now(UTC)}


def view_filter(
    user_id: str,
    view: TaskView = TaskView.ACTIVE,
    context_id: str | None = None,
    type: str | None = None,
    status: TaskStatus | str | None = None,
) -> Predicate | None:
    """构建列表视图谓词

    - active: 未归档且未删除
    - archive: 已归档且未删除（trashed 优先）
    - trash: 已删除，无论是否归档
    - all: 所有未删除
    """
    builder = FilterBuilder().equals("user_id", user_id)

    if view is TaskView.ACTIVE:
        builder.is_empty("archived_at").is_empty("deleted_at")
    elif view is TaskView.ARCHIVE:
        builder.not_empty("archived_at").is_empty("deleted_at")
    elif view is TaskView.TRASH:
        builder.not_empty("deleted_at")
    else:
        builder.is_empty("deleted_at")

    if context_id:
        builder.equals("context_id", context_id)
    if type:
        builder.equals("type", type)
    if status:
        builder.equals("status", _coerce_status(status))

    return builder.build()
