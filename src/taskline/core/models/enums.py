"""枚举定义

包含 TaskStatus、SoftState、RecurrencePattern、TaskView 以及集合名 Collection。
status 与 soft-state 相互独立：status 由更新驱动，
soft-state 由 archived_at / deleted_at 两个时间戳推导。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """任务状态"""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"
    CANCELLED = "cancelled"

    # 团队 pool 中待认领
    UNASSIGNED = "unassigned"


# 不再产生虚拟 occurrence 的状态
CLOSED_STATES: set[TaskStatus] = {
    TaskStatus.DONE,
    TaskStatus.CANCELLED,
}


class SoftState(StrEnum):
    """软状态（推导值，不落库）"""

    ACTIVE = "active"
    ARCHIVED = "archived"
    TRASHED = "trashed"


class RecurrencePattern(StrEnum):
    """重复规则"""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class TaskView(StrEnum):
    """列表视图"""

    ACTIVE = "active"
    ARCHIVE = "archive"
    TRASH = "trash"
    ALL = "all"


class Collection(StrEnum):
    """持久化集合名"""

    TASKS = "tasks"
    DEPENDENCIES = "task_dependencies"
    COMMENTS = "task_comments"
    TIME_LOGS = "task_time_logs"
