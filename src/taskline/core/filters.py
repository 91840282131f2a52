"""Filter Builder -- 类型化谓词 AST

调用方通过 FilterBuilder 组合谓词，得到不可变的 AST；
AST 在边界处渲染为目标查询语言：
- render_expression(): 布尔表达式字符串（值经转义后嵌入）
- render_sql(): 参数化 SQL WHERE 子句（值一律走参数绑定）

字符串转义顺序固定：先反斜杠，再双引号，最后单引号。
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Union

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Op(StrEnum):
    """比较运算符（二元运算符取值即表达式字符串中的写法）"""

    EQ = "="
    NE = "!="
    CONTAINS = "~"
    GT = ">"
    LT = "<"
    EMPTY = "empty"
    NOT_EMPTY = "not_empty"


class Conjunction(StrEnum):
    AND = "&&"
    OR = "||"


@dataclass(frozen=True)
class Condition:
    """单字段比较"""

    field: str
    op: Op
    value: Any = None


@dataclass(frozen=True)
class Raw:
    """原样嵌入的条件

    expression 用于表达式字符串渲染；sql/params 用于 SQL 渲染，
    未提供 sql 时该谓词不能下推到 SQL 存储。
    """

    expression: str
    sql: str | None = None
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Group:
    """AND / OR 组合"""

    conjunction: Conjunction
    children: tuple["Predicate", ...] = field(default_factory=tuple)


Predicate = Union[Condition, Raw, Group]


def escape_filter_value(value: Any) -> Any:
    """转义字符串值中的特殊字符，非字符串原样返回

    顺序不可调换：先转义反斜杠，否则后续插入的反斜杠会被二次转义。
    """
    if not isinstance(value, str):
        return value
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("'", "\\'")


def _check_field(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid filter field name: {name!r}")
    return name


def _to_scalar(value: Any) -> Any:
    """将日期、枚举等值统一为可比较的标量"""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, StrEnum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class FilterBuilder:
    """链式构建谓词，顶层条件以 AND 连接

    示例:
        FilterBuilder().equals("user_id", uid).not_empty("deleted_at").build()
    """

    def __init__(self) -> None:
        self._conditions: list[Predicate] = []

    def equals(self, name: str, value: Any) -> "FilterBuilder":
        self._conditions.append(Condition(_check_field(name), Op.EQ, value))
        return self

    def not_equals(self, name: str, value: Any) -> "FilterBuilder":
        self._conditions.append(Condition(_check_field(name), Op.NE, value))
        return self

    def contains(self, name: str, value: str) -> "FilterBuilder":
        """模糊匹配"""
        self._conditions.append(Condition(_check_field(name), Op.CONTAINS, value))
        return self

    def not_empty(self, name: str) -> "FilterBuilder":
        self._conditions.append(Condition(_check_field(name), Op.NOT_EMPTY))
        return self

    def is_empty(self, name: str) -> "FilterBuilder":
        self._conditions.append(Condition(_check_field(name), Op.EMPTY))
        return self

    def greater_than(self, name: str, value: Any) -> "FilterBuilder":
        self._conditions.append(Condition(_check_field(name), Op.GT, value))
        return self

    def less_than(self, name: str, value: Any) -> "FilterBuilder":
        self._conditions.append(Condition(_check_field(name), Op.LT, value))
        return self

    def raw(
        self,
        expression: str,
        sql: str | None = None,
        params: Sequence[Any] = (),
    ) -> "FilterBuilder":
        """原样追加条件（调用方负责其安全性）"""
        self._conditions.append(Raw(expression, sql, tuple(params)))
        return self

    def in_(self, name: str, values: Sequence[Any]) -> "FilterBuilder":
        """字段取值属于 values 之一（OR 组）"""

        def _add(inner: "FilterBuilder") -> None:
            for value in values:
                inner.equals(name, value)

        return self.or_(_add)

    def or_(self, callback: Callable[["FilterBuilder"], Any]) -> "FilterBuilder":
        """追加 OR 组

        示例:
            f.or_(lambda g: g.equals("status", "todo").equals("status", "blocked"))
        """
        inner = FilterBuilder()
        callback(inner)
        if inner._conditions:
            self._conditions.append(Group(Conjunction.OR, tuple(inner._conditions)))
        return self

    def extend(self, predicate: Predicate | None) -> "FilterBuilder":
        """追加已构建的谓词"""
        if predicate is not None:
            self._conditions.append(predicate)
        return self

    def build(self) -> Predicate | None:
        """构建最终谓词，无条件时返回 None"""
        if not self._conditions:
            return None
        if len(self._conditions) == 1:
            return self._conditions[0]
        return Group(Conjunction.AND, tuple(self._conditions))

    def count(self) -> int:
        return len(self._conditions)

    def clear(self) -> "FilterBuilder":
        self._conditions = []
        return self


def render_expression(predicate: Predicate | None, _nested: bool = False) -> str:
    """渲染为布尔表达式字符串"""
    if predicate is None:
        return ""
    if isinstance(predicate, Raw):
        return predicate.expression
    if isinstance(predicate, Group):
        parts = [render_expression(child, True) for child in predicate.children]
        parts = [p for p in parts if p]
        joined = f" {predicate.conjunction.value} ".join(parts)
        # OR 组总是加括号；嵌套的 AND 组加括号以保持优先级
        if len(parts) > 1 and (predicate.conjunction is Conjunction.OR or _nested):
            return f"({joined})"
        return joined

    if predicate.op is Op.EMPTY:
        return f'{predicate.field} = ""'
    if predicate.op is Op.NOT_EMPTY:
        return f'{predicate.field} != ""'
    if predicate.value is None:
        return f"{predicate.field} {predicate.op.value} null"
    escaped = escape_filter_value(str(_to_scalar(predicate.value)))
    return f'{predicate.field} {predicate.op.value} "{escaped}"'


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def render_sql(
    predicate: Predicate | None,
    allowed_fields: set[str] | None = None,
) -> tuple[str, list[Any]]:
    """渲染为参数化 SQL WHERE 子句

    Args:
        predicate: 谓词
        allowed_fields: 允许出现的列名集合（为空不校验）

    Returns:
        (sql, params)，无条件时 sql 为 "1 = 1"

    Raises:
        ValueError: 列名不在白名单内，或 Raw 条件缺少 SQL 形式
    """
    if predicate is None:
        return "1 = 1", []

    if isinstance(predicate, Raw):
        if predicate.sql is None:
            raise ValueError(
                f"Raw filter has no SQL form: {predicate.expression!r}"
            )
        return f"({predicate.sql})", list(predicate.params)

    if isinstance(predicate, Group):
        parts: list[str] = []
        params: list[Any] = []
        for child in predicate.children:
            child_sql, child_params = render_sql(child, allowed_fields)
            parts.append(child_sql)
            params.extend(child_params)
        keyword = " AND " if predicate.conjunction is Conjunction.AND else " OR "
        return f"({keyword.join(parts)})", params

    name = _check_field(predicate.field)
    if allowed_fields is not None and name not in allowed_fields:
        raise ValueError(f"Unknown filter field: {name!r}")

    if predicate.op is Op.EMPTY:
        return f"({name} IS NULL OR {name} = '')", []
    if predicate.op is Op.NOT_EMPTY:
        return f"({name} IS NOT NULL AND {name} != '')", []

    value = _to_scalar(predicate.value)
    if value is None:
        if predicate.op is Op.EQ:
            return f"{name} IS NULL", []
        if predicate.op is Op.NE:
            return f"{name} IS NOT NULL", []
        raise ValueError(f"Operator {predicate.op.value} does not accept null")

    if predicate.op is Op.CONTAINS:
        return f"{name} LIKE ? ESCAPE '\\'", [f"%{_escape_like(str(value))}%"]
    if predicate.op is Op.NE:
        # 与表达式语义一致：NULL 视为“不等于”任意非空值
        return f"({name} IS NULL OR {name} != ?)", [value]
    return f"{name} {predicate.op.value} ?", [value]


def user_filter(user_id: str) -> Predicate | None:
    """按所有者过滤"""
    return FilterBuilder().equals("user_id", user_id).build()


def workspace_filter(workspace_id: str, user_id: str) -> Predicate | None:
    """按所有者 + 工作区过滤"""
    return (
        FilterBuilder()
        .equals("user_id", user_id)
        .equals("context_id", workspace_id)
        .build()
    )
