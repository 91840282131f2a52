"""Recurrence Engine -- 重复任务的下一次 occurrence

任务由非 done 进入 done、带有 recurrence 且具备 due_date 或 scheduled_time 时，
生成恰好一个后继任务；错过的周期不补建。
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, Field

from .config import MAX_VIRTUAL_OCCURRENCES
from .models.enums import CLOSED_STATES, Collection, RecurrencePattern, TaskStatus
from .models.task import Task
from .store.protocols import RecordGateway

log = structlog.get_logger()

_DAY_OFFSETS: dict[RecurrencePattern, int] = {
    RecurrencePattern.DAILY: 1,
    RecurrencePattern.WEEKLY: 7,
    RecurrencePattern.BIWEEKLY: 14,
}

# 后继任务从模板复制的字段
TEMPLATE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "priority",
    "duration",
    "category_id",
    "project_id",
    "context_id",
    "recurrence",
    "recurrence_end",
    "type",
    "agenda",
    "user_id",
)


def add_month(value: date) -> date:
    """加一个自然月，日期截断到目标月最后一天（1/31 -> 2/29）"""
    year, month = (value.year + 1, 1) if value.month == 12 else (value.year, value.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def next_occurrence(
    reference: date,
    pattern: RecurrencePattern | str,
    end: date | None = None,
) -> date | None:
    """计算下一次 occurrence 日期

    Returns:
        下一次日期；超过 end 时返回 None
    """
    pattern = RecurrencePattern(pattern)
    if pattern is RecurrencePattern.MONTHLY:
        candidate = add_month(reference)
    else:
        candidate = reference + timedelta(days=_DAY_OFFSETS[pattern])

    if end is not None and candidate > end:
        return None
    return candidate


def reference_date(task: Task) -> date | None:
    """参考日期：due_date 优先，否则取 scheduled_time 的日期部分"""
    if task.due_date is not None:
        return task.due_date
    if task.scheduled_time is not None:
        return task.scheduled_time.date()
    return None


def _on_date(value: datetime | None, target: date) -> datetime | None:
    return datetime.combine(target, value.timetz()) if value is not None else None


def _shifted_times(task: Task, target: date) -> dict[str, datetime | None]:
    """把时间字段放到 target 当天的相同钟点

    有 start_time 时 end_time 保持与 start_time 的间隔，跨天的会议不会被压缩。
    """
    start_time = _on_date(task.start_time, target)
    if task.end_time is not None and task.start_time is not None:
        end_time = start_time + (task.end_time - task.start_time)
    else:
        end_time = _on_date(task.end_time, target)
    return {
        "scheduled_time": _on_date(task.scheduled_time, target),
        "start_time": start_time,
        "end_time": end_time,
    }


def build_successor(task: Task) -> dict[str, Any] | None:
    """构建后继任务字段，不满足条件时返回 None

    scheduled_time / start_time 放到新日期的相同钟点，end_time 保持与 start_time 的间隔。
    """
    if task.recurrence is None:
        return None
    reference = reference_date(task)
    if reference is None:
        return None

    next_date = next_occurrence(reference, task.recurrence, task.recurrence_end)
    if next_date is None:
        return None

    fields: dict[str, Any] = {name: getattr(task, name) for name in TEMPLATE_FIELDS}
    fields.update(
        status=TaskStatus.TODO,
        due_date=next_date,
        **_shifted_times(task, next_date),
    )
    return fields


async def spawn_successor(gateway: RecordGateway, task: Task) -> Task | None:
    """为已完成的重复任务创建后继记录

    Returns:
        新建的后继任务；无需创建（无规则、无日期、超出截止日期）时返回 None
    """
    fields = build_successor(task)
    if fields is None:
        if task.recurrence is not None:
            log.info("recurrence_terminated", task_id=task.id, recurrence=task.recurrence)
        return None

    record = await gateway.create(Collection.TASKS, fields)
    successor = Task.from_record(record)
    log.info(
        "recurrence_successor_created",
        task_id=task.id,
        successor_id=successor.id,
        due_date=str(successor.due_date),
    )
    return successor


class VirtualOccurrence(BaseModel):
    """日历展示用的未来 occurrence（计算得出，不落库）"""

    id: str = Field(description="虚拟 ID：{原任务 ID}_virtual_{序号}")
    original_task_id: str = Field(description="原任务 ID")
    title: str
    status: TaskStatus = TaskStatus.TODO
    due_date: date
    scheduled_time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


def upcoming_occurrences(
    task: Task,
    limit: int = MAX_VIRTUAL_OCCURRENCES,
) -> list[VirtualOccurrence]:
    """生成未来的虚拟 occurrence

    done / cancelled 的任务不再生成；受 recurrence_end 与 limit 限制。
    每一项都由上一项推算，与逐次完成生成的后继日期一致。
    """
    if task.recurrence is None or task.status in CLOSED_STATES:
        return []
    reference = reference_date(task)
    if reference is None:
        return []

    occurrences: list[VirtualOccurrence] = []
    current = reference
    for index in range(limit):
        next_date = next_occurrence(current, task.recurrence, task.recurrence_end)
        if next_date is None:
            break
        occurrences.append(
            VirtualOccurrence(
                id=f"{task.id}_virtual_{index}",
                original_task_id=task.id,
                title=task.title,
                due_date=next_date,
                **_shifted_times(task, next_date),
            )
        )
        current = next_date
    return occurrences
