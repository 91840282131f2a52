"""操作上下文模型

Actor 显式贯穿每一次调用，替代全局的“当前用户”。
BulkResult 汇总批量操作的逐项结果。
"""

from typing import Any

from pydantic import BaseModel, Field

from ..exceptions import AuthenticationRequired


class Actor(BaseModel):
    """操作者身份"""

    user_id: str = Field(description="操作者 ID")


def require_actor(actor: Actor | None) -> Actor:
    """校验操作者身份存在

    Raises:
        AuthenticationRequired: actor 为空或 user_id 为空
    """
    if actor is None or not actor.user_id:
        raise AuthenticationRequired()
    return actor


class BulkItemResult(BaseModel):
    """批量操作中单条记录的结果"""

    id: str = Field(description="记录 ID")
    ok: bool = Field(description="是否成功")
    error_code: str | None = Field(default=None, description="失败时的错误码")
    error: str | None = Field(default=None, description="失败时的错误描述")
    record: dict[str, Any] | None = Field(default=None, description="成功时的记录")


class BulkResult(BaseModel):
    """批量操作结果（无原子性保证，允许部分失败）"""

    items: list[BulkItemResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [item.id for item in self.items if item.ok]

    @property
    def failed(self) -> list[str]:
        return [item.id for item in self.items if not item.ok]
