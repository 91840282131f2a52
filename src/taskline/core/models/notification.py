"""Notification Domain Model

主操作提交之后向外部协作方派发的通知。
派发为 fire-and-forget：失败只记录日志，不影响主操作，也不重试。
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(StrEnum):
    """通知类型"""

    TASK_COMPLETED = "task_completed"
    CRITICAL_TASK_CREATED = "critical_task_created"


class TaskCompletedPayload(BaseModel):
    """TASK_COMPLETED 通知 payload"""

    task_id: str
    user_id: str


class CriticalTaskPayload(BaseModel):
    """CRITICAL_TASK_CREATED 通知 payload"""

    task_id: str
    title: str
    description: str | None = None
    priority: str | None = None
    user_id: str


class Notification(BaseModel):
    """通知信封"""

    type: NotificationType = Field(description="通知类型")
    ts: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="派发时间",
    )
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")
