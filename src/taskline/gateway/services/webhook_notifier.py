"""Webhook 协作方 -- 将通知 POST 到外部 webhook

GamificationWebhook: 任务完成 -> {type, task_id, user_id}
AutomationWebhook: critical 任务创建 -> {type, task: {...}}

投递失败（连接错误、超时、非 2xx）抛出 WebhookDeliveryError，
由 NotificationHub 捕获并记录日志，不重试。
"""

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from taskline.core.models import NotificationType, Task

log = structlog.get_logger()


class WebhookDeliveryError(Exception):
    """webhook 投递失败"""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Webhook delivery to {url} failed: {reason}")
        self.url = url
        self.reason = reason


class _WebhookSender:
    """共享的 POST 逻辑"""

    def __init__(
        self,
        url: str,
        timeout_s: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout_s = timeout_s
        self._client = client

    async def _post(self, body: dict[str, Any]) -> None:
        body = {**body, "sent_at": datetime.now(UTC).isoformat()}
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=body, timeout=self._timeout_s)
            else:
                async with httpx.AsyncClient() as http_client:
                    resp = await http_client.post(self._url, json=body, timeout=self._timeout_s)
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(self._url, type(e).__name__) from e

        if resp.status_code >= 300:
            raise WebhookDeliveryError(self._url, f"HTTP {resp.status_code}")
        log.debug("webhook_delivered", url=self._url, notification_type=body.get("type"))


class GamificationWebhook(_WebhookSender):
    """积分子系统 webhook"""

    async def on_task_completed(self, task_id: str, user_id: str) -> None:
        await self._post(
            {
                "type": NotificationType.TASK_COMPLETED.value,
                "task_id": task_id,
                "user_id": user_id,
            }
        )


class AutomationWebhook(_WebhookSender):
    """自动化子系统 webhook"""

    async def notify_critical_task(self, task: Task) -> None:
        await self._post(
            {
                "type": NotificationType.CRITICAL_TASK_CREATED.value,
                "task": task.model_dump(
                    mode="json",
                    include={"id", "title", "description", "priority", "user_id", "due_date"},
                ),
            }
        )
