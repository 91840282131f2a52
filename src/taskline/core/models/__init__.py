"""Taskline Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .context import Actor, BulkItemResult, BulkResult, require_actor
from .dependency import Comment, Dependency, TimeLog
from .enums import (
    CLOSED_STATES,
    Collection,
    RecurrencePattern,
    SoftState,
    TaskStatus,
    TaskView,
)
from .notification import (
    CriticalTaskPayload,
    Notification,
    NotificationType,
    TaskCompletedPayload,
)
from .task import WRITABLE_FIELDS, Task

__all__ = [
    # 枚举
    "TaskStatus",
    "SoftState",
    "RecurrencePattern",
    "TaskView",
    "Collection",
    "CLOSED_STATES",
    # Task
    "Task",
    "WRITABLE_FIELDS",
    # 依赖行
    "Dependency",
    "Comment",
    "TimeLog",
    # 上下文
    "Actor",
    "require_actor",
    "BulkItemResult",
    "BulkResult",
    # 通知
    "Notification",
    "NotificationType",
    "TaskCompletedPayload",
    "CriticalTaskPayload",
]
