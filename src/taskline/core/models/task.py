"""Task Domain Model

记录字段直接映射 tasks 表列；soft-state 不落库，由时间戳推导。
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import RecurrencePattern, TaskStatus


class Task(BaseModel):
    """Task 数据模型"""

    id: str = Field(description="唯一标识，ULID 格式")
    user_id: str = Field(description="所有者")
    title: str = Field(description="任务标题")
    description: str | None = Field(default=None, description="任务描述")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    priority: str | None = Field(default=None, description="优先级")
    type: str | None = Field(default=None, description="任务类型，如 meeting")

    # 时间安排
    due_date: date | None = Field(default=None, description="截止日期")
    scheduled_time: datetime | None = Field(default=None, description="计划时间")
    start_time: datetime | None = Field(default=None, description="会议开始时间")
    end_time: datetime | None = Field(default=None, description="会议结束时间")
    duration: int | None = Field(default=None, description="预计时长（分钟）")
    agenda: str | None = Field(default=None, description="会议议程")

    # 重复规则
    recurrence: RecurrencePattern | None = Field(default=None, description="重复规则")
    recurrence_end: date | None = Field(default=None, description="重复截止日期")

    # 团队 pool 与认领
    team_id: str | None = Field(default=None, description="所属团队")
    assigned_to: str | None = Field(default=None, description="负责人")
    claimed_by: str | None = Field(default=None, description="认领人")
    claimed_at: datetime | None = Field(default=None, description="认领时间")

    blocked_reason: str | None = Field(default=None, description="阻塞原因")

    # 关联
    category_id: str | None = Field(default=None, description="分类")
    project_id: str | None = Field(default=None, description="项目")
    context_id: str | None = Field(default=None, description="工作区")
    tags: list[str] = Field(default_factory=list, description="标签 ID 列表")

    # 软状态时间戳
    archived_at: datetime | None = Field(default=None, description="归档时间")
    deleted_at: datetime | None = Field(default=None, description="移入回收站时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")

    created_at: datetime | None = Field(default=None, description="创建时间")
    updated_at: datetime | None = Field(default=None, description="更新时间")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Task":
        """由持久化记录构造 Task"""
        return cls.model_validate(record)


# 调用方可写的字段（id / 时间戳由引擎维护）
WRITABLE_FIELDS: frozenset[str] = frozenset(
    {
        "user_id",
        "title",
        "description",
        "status",
        "priority",
        "type",
        "due_date",
        "scheduled_time",
        "start_time",
        "end_time",
        "duration",
        "agenda",
        "recurrence",
        "recurrence_end",
        "team_id",
        "assigned_to",
        "claimed_by",
        "claimed_at",
        "blocked_reason",
        "category_id",
        "project_id",
        "context_id",
        "tags",
    }
)
