"""NotificationHub -- 主操作提交后的 fire-and-forget 通知

外部协作方（gamification、automation）在启动时注册到 hub；
引擎只依赖 hub，不直接引用协作方实现。
每次派发启动独立的 asyncio task：失败只记录日志，不重试，不影响主操作。
"""

import asyncio
from typing import Protocol

import structlog

from .config import CRITICAL_PRIORITIES
from .models.notification import (
    CriticalTaskPayload,
    Notification,
    NotificationType,
    TaskCompletedPayload,
)
from .models.task import Task

log = structlog.get_logger()


class GamificationCollaborator(Protocol):
    """积分/等级子系统：仅在任务完成时被通知"""

    async def on_task_completed(self, task_id: str, user_id: str) -> None: ...


class AutomationCollaborator(Protocol):
    """自动化子系统：critical 任务创建时被通知"""

    async def notify_critical_task(self, task: Task) -> None: ...


def is_critical(task: Task) -> bool:
    """priority 属于 high / urgent / 5 视为 critical"""
    return task.priority is not None and str(task.priority).lower() in CRITICAL_PRIORITIES


class NotificationHub:
    """通知派发器 -- 持有协作方列表与在途的派发 task"""

    def __init__(self) -> None:
        self._gamification: list[GamificationCollaborator] = []
        self._automation: list[AutomationCollaborator] = []
        # 持有在途 task 的强引用，完成后自动移除
        self._pending: set[asyncio.Task] = set()

    def register_gamification(self, collaborator: GamificationCollaborator) -> None:
        self._gamification.append(collaborator)

    def register_automation(self, collaborator: AutomationCollaborator) -> None:
        self._automation.append(collaborator)

    @property
    def pending(self) -> int:
        """在途派发数量"""
        return len(self._pending)

    def task_completed(self, task: Task) -> None:
        """派发 TASK_COMPLETED"""
        notification = Notification(
            type=NotificationType.TASK_COMPLETED,
            payload=TaskCompletedPayload(task_id=task.id, user_id=task.user_id).model_dump(),
        )
        for collaborator in self._gamification:
            self._spawn(
                notification,
                collaborator.on_task_completed(task.id, task.user_id),
            )

    def critical_task_created(self, task: Task) -> None:
        """非 critical 任务直接忽略"""
        if not is_critical(task):
            return
        notification = Notification(
            type=NotificationType.CRITICAL_TASK_CREATED,
            payload=CriticalTaskPayload(
                task_id=task.id,
                title=task.title,
                description=task.description,
                priority=task.priority,
                user_id=task.user_id,
            ).model_dump(),
        )
        for collaborator in self._automation:
            self._spawn(notification, collaborator.notify_critical_task(task))

    def _spawn(self, notification: Notification, coro) -> None:
        task = asyncio.create_task(self._deliver(notification, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: Notification, coro) -> None:
        try:
            await coro
        except Exception as e:
            log.warning(
                "notification_delivery_failed",
                notification_type=notification.type.value,
                task_id=notification.payload.get("task_id"),
                error_type=type(e).__name__,
                error=str(e),
            )

    async def drain(self) -> None:
        """等待所有在途派发完成（关闭阶段与测试使用）"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
