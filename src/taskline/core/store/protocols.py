"""Store Protocol 接口定义

定义持久化网关的抽象接口，使用 Python Protocol 实现结构化子类型（duck typing）。
引擎只依赖此接口；SQLite 实现见 record_gateway.py。
"""

from typing import Any, Protocol

from ..filters import Predicate


class RecordGateway(Protocol):
    """记录存储接口

    所有方法在失败时抛出 SubstrateFailure（或其子类），
    记录不存在时抛出 NotFound。
    """

    async def get(self, collection: str, record_id: str) -> dict[str, Any]:
        """根据 id 查询记录"""
        ...

    async def list(
        self,
        collection: str,
        filter: Predicate | None = None,
        sort: str | None = None,
    ) -> list[dict[str, Any]]:
        """按谓词查询记录列表

        sort 采用逗号分隔的字段名，前缀 "-" 表示倒序，如 "-created_at,id"。
        """
        ...

    async def create(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        """创建记录，返回完整记录"""
        ...

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """更新记录，返回完整记录

        expected 非空时为条件更新：仅当记录当前值与 expected 全部一致时写入，
        否则抛出 ConditionFailed。
        """
        ...

    async def delete(self, collection: str, record_id: str) -> None:
        """删除记录；仍被引用时抛出 ReferenceConflict"""
        ...
