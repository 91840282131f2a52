"""Taskline Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from .protocols import RecordGateway
from .record_gateway import SqliteRecordGateway
from .sqlite_init import init_db, verify_foreign_keys


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        timeout_s: float = 10.0,
        db_path: str | None = None,
    ) -> None:
        self.conn = conn
        self.db_path = db_path
        self.gateway = SqliteRecordGateway(conn, timeout_s=timeout_s)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(
    db_path: str,
    timeout_s: float = 10.0,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        timeout_s: 单次持久化调用超时（秒）

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn, timeout_s=timeout_s, db_path=db_path)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "RecordGateway",
    "SqliteRecordGateway",
    "init_db",
    "verify_foreign_keys",
]
