"""Dependency / Comment / TimeLog 模型

task_dependencies 中一条边 (task_id, blocker_id) 表示 blocker_id 必须先完成。
comments 与 time_logs 是 tasks 的依赖行，永久删除时需先清理。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Dependency(BaseModel):
    """阻塞边"""

    id: str = Field(description="唯一标识，ULID 格式")
    task_id: str = Field(description="被阻塞的任务")
    blocker_id: str = Field(description="阻塞方任务")
    user_id: str = Field(description="创建者")
    created_at: datetime | None = Field(default=None, description="创建时间")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Dependency":
        return cls.model_validate(record)


class Comment(BaseModel):
    """任务评论"""

    id: str = Field(description="唯一标识，ULID 格式")
    task_id: str = Field(description="关联任务")
    user_id: str = Field(description="作者")
    content: str = Field(description="评论内容")
    created_at: datetime | None = Field(default=None, description="创建时间")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Comment":
        return cls.model_validate(record)


class TimeLog(BaseModel):
    """工时记录"""

    id: str = Field(description="唯一标识，ULID 格式")
    task_id: str = Field(description="关联任务")
    user_id: str = Field(description="记录人")
    minutes: int = Field(ge=0, description="时长（分钟）")
    note: str | None = Field(default=None, description="备注")
    created_at: datetime | None = Field(default=None, description="创建时间")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "TimeLog":
        return cls.model_validate(record)
