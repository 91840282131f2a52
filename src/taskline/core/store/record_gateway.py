"""RecordGateway SQLite 实现

所有集合共用一套 get/list/create/update/delete 操作：
- 列名白名单来自 sqlite_init.COLLECTION_COLUMNS
- 过滤谓词经 filters.render_sql 渲染为参数化 WHERE 子句
- 每次写入在连接级锁内执行并立即提交/回滚，避免并发协程互相提交或回滚对方的语句
- 每次调用带超时，超时视为 SubstrateFailure
"""

import asyncio
import json
import re
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

import aiosqlite
import structlog
from ulid import ULID

from ..exceptions import (
    ConditionFailed,
    NotFound,
    ReferenceConflict,
    SubstrateFailure,
)
from ..filters import Predicate, render_sql
from .sqlite_init import COLLECTION_COLUMNS, JSON_COLUMNS

log = structlog.get_logger()

_SORT_FIELD = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_]*$")


def _is_closed_connection(error: ValueError) -> bool:
    message = str(error).lower()
    return "closed" in message or "no active connection" in message


def _encode(value: Any) -> Any:
    """Python 值 -> SQLite 列值"""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, StrEnum):
        return value.value
    return value


class SqliteRecordGateway:
    """RecordGateway 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection, timeout_s: float = 10.0) -> None:
        self._conn = conn
        self._timeout_s = timeout_s
        self._lock = asyncio.Lock()

    # ---- 内部工具 ----

    @staticmethod
    def _columns(collection: str) -> frozenset[str]:
        columns = COLLECTION_COLUMNS.get(collection)
        if columns is None:
            raise ValueError(f"Unknown collection: {collection!r}")
        return columns

    def _encode_fields(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        columns = self._columns(collection)
        json_columns = JSON_COLUMNS.get(collection, frozenset())
        encoded: dict[str, Any] = {}
        for key, value in fields.items():
            if key not in columns:
                raise ValueError(f"Unknown field for {collection}: {key!r}")
            if key in json_columns:
                encoded[key] = json.dumps(value if value is not None else [], ensure_ascii=False)
            else:
                encoded[key] = _encode(value)
        return encoded

    @staticmethod
    def _decode_row(collection: str, row: aiosqlite.Row) -> dict[str, Any]:
        record = dict(row)
        for key in JSON_COLUMNS.get(collection, frozenset()):
            raw = record.get(key)
            record[key] = json.loads(raw) if raw else []
        return record

    def _order_by(self, collection: str, sort: str | None) -> str:
        if not sort:
            return ""
        columns = self._columns(collection)
        terms = []
        for term in sort.split(","):
            term = term.strip()
            if not term:
                continue
            if not _SORT_FIELD.match(term) or term.lstrip("-") not in columns:
                raise ValueError(f"Invalid sort field: {term!r}")
            if term.startswith("-"):
                terms.append(f"{term[1:]} DESC")
            else:
                terms.append(f"{term} ASC")
        return f" ORDER BY {', '.join(terms)}" if terms else ""

    async def _run(self, operation: str, collection: str, work):
        """在锁与超时内执行一次数据库操作，并将底层异常转换为 SubstrateFailure"""
        try:
            async with asyncio.timeout(self._timeout_s):
                async with self._lock:
                    return await work()
        except TimeoutError as e:
            log.error(
                "substrate_timeout",
                operation=operation,
                collection=collection,
                timeout_s=self._timeout_s,
            )
            raise SubstrateFailure(
                f"{operation} on {collection} timed out after {self._timeout_s}s"
            ) from e
        except aiosqlite.IntegrityError as e:
            if "FOREIGN KEY" in str(e).upper():
                raise ReferenceConflict(
                    f"{operation} on {collection} blocked by referencing rows"
                ) from e
            raise SubstrateFailure(
                f"{operation} on {collection} violated a constraint: {e}",
                recoverable=False,
            ) from e
        except (aiosqlite.Error, ValueError) as e:
            # aiosqlite 连接关闭后抛出 ValueError
            if isinstance(e, ValueError) and not _is_closed_connection(e):
                raise
            log.error(
                "substrate_error",
                operation=operation,
                collection=collection,
                error_type=type(e).__name__,
            )
            raise SubstrateFailure(f"{operation} on {collection} failed: {e}") from e

    async def _write(self, sql: str, params: list[Any]) -> int:
        """执行单条写语句并提交，失败回滚；返回影响行数"""
        try:
            cursor = await self._conn.execute(sql, params)
            await self._conn.commit()
            return cursor.rowcount
        except Exception:
            await self._conn.rollback()
            raise

    async def _fetch_one(self, collection: str, record_id: str) -> dict[str, Any] | None:
        cursor = await self._conn.execute(
            f"SELECT * FROM {collection} WHERE id = ?",
            (record_id,),
        )
        row = await cursor.fetchone()
        return self._decode_row(collection, row) if row is not None else None

    # ---- 公共接口 ----

    async def get(self, collection: str, record_id: str) -> dict[str, Any]:
        """根据 id 查询记录

        Raises:
            NotFound: 记录不存在
        """
        self._columns(collection)
        record = await self._run(
            "get", collection, lambda: self._fetch_one(collection, record_id)
        )
        if record is None:
            raise NotFound(collection, record_id)
        return record

    async def create(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        """创建记录；缺省 id 使用 ULID，自动写入 created_at（及 updated_at）"""
        columns = self._columns(collection)
        now = datetime.now(UTC)
        values = dict(fields)
        values.setdefault("id", str(ULID()))
        values.setdefault("created_at", now)
        if "updated_at" in columns:
            values.setdefault("updated_at", now)
        encoded = self._encode_fields(collection, values)

        names = list(encoded.keys())
        sql = (
            f"INSERT INTO {collection} ({', '.join(names)}) "
            f"VALUES ({', '.join('?' for _ in names)})"
        )
        params = [encoded[name] for name in names]

        async def work():
            await self._write(sql, params)
            return await self._fetch_one(collection, encoded["id"])

        record = await self._run("create", collection, work)
        log.debug("record_created", collection=collection, record_id=encoded["id"])
        return record

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """更新记录；expected 非空时为 compare-and-swap 条件更新

        Raises:
            NotFound: 记录不存在
            ConditionFailed: expected 条件未命中
        """
        columns = self._columns(collection)
        values = dict(fields)
        if "updated_at" in columns:
            values.setdefault("updated_at", datetime.now(UTC))
        encoded = self._encode_fields(collection, values)
        expected_encoded = self._encode_fields(collection, expected or {})

        assignments = ", ".join(f"{name} = ?" for name in encoded)
        where = ["id = ?"]
        params = [*encoded.values(), record_id]
        for name, value in expected_encoded.items():
            # IS 同时匹配 NULL 与普通值
            where.append(f"{name} IS ?")
            params.append(value)
        sql = f"UPDATE {collection} SET {assignments} WHERE {' AND '.join(where)}"

        async def work():
            rowcount = await self._write(sql, params) if encoded else 1
            current = await self._fetch_one(collection, record_id)
            return rowcount, current

        rowcount, current = await self._run("update", collection, work)
        if current is None:
            raise NotFound(collection, record_id)
        if rowcount == 0:
            raise ConditionFailed(collection, record_id)
        return current

    async def delete(self, collection: str, record_id: str) -> None:
        """删除记录

        Raises:
            NotFound: 记录不存在
            ReferenceConflict: 仍有依赖行引用该记录
        """
        self._columns(collection)
        rowcount = await self._run(
            "delete",
            collection,
            lambda: self._write(f"DELETE FROM {collection} WHERE id = ?", [record_id]),
        )
        if rowcount == 0:
            raise NotFound(collection, record_id)
        log.debug("record_deleted", collection=collection, record_id=record_id)

    async def first(
        self, collection: str, filter: Predicate | None = None
    ) -> dict[str, Any] | None:
        """查询第一条匹配记录，无匹配返回 None"""
        records = await self.list(collection, filter)
        return records[0] if records else None

    # list 放在类末尾：方法名会遮蔽类体内后续注解中的内置 list
    async def list(
        self,
        collection: str,
        filter: Predicate | None = None,
        sort: str | None = None,
    ) -> list[dict[str, Any]]:
        """按谓词查询记录列表"""
        columns = self._columns(collection)
        where, params = render_sql(filter, set(columns))
        sql = f"SELECT * FROM {collection} WHERE {where}{self._order_by(collection, sort)}"

        async def work():
            cursor = await self._conn.execute(sql, params)
            rows = await cursor.fetchall()
            return [self._decode_row(collection, row) for row in rows]

        return await self._run("list", collection, work)
