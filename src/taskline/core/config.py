"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、持久化调用超时、批量并发上限、环检测深度、
以及外部协作方 webhook 地址等可配置项。
"""

import os
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKLINE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKLINE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskline.db"),
    )


# 视为 critical 的优先级取值（触发 automation 通知）
CRITICAL_PRIORITIES: frozenset[str] = frozenset({"high", "urgent", "5"})

# 虚拟 occurrence 默认生成上限
MAX_VIRTUAL_OCCURRENCES: int = 50


class EngineConfig(BaseModel):
    """生命周期引擎配置 -- 从环境变量加载

    环境变量:
        TASKLINE_SUBSTRATE_TIMEOUT_S: 单次持久化调用超时（秒，默认 10）
        TASKLINE_BULK_CONCURRENCY: 批量操作并发上限（默认 8）
        TASKLINE_CYCLE_CHECK: 环检测深度（full/direct，默认 full）
        TASKLINE_AUTOMATION_WEBHOOK_URL: critical 任务通知 webhook
        TASKLINE_GAMIFICATION_WEBHOOK_URL: 任务完成通知 webhook
        TASKLINE_WEBHOOK_TIMEOUT_S: webhook 调用超时（秒，默认 5）
    """

    substrate_timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="单次持久化调用超时（秒）",
    )
    bulk_concurrency: int = Field(
        default=8,
        ge=1,
        description="批量操作并发上限",
    )
    cycle_check: Literal["full", "direct"] = Field(
        default="full",
        description="环检测深度：full 全量可达性扫描；direct 仅检查反向边",
    )
    automation_webhook_url: str = Field(
        default="",
        description="critical 任务通知 webhook（为空时不发送）",
    )
    gamification_webhook_url: str = Field(
        default="",
        description="任务完成通知 webhook（为空时不发送）",
    )
    webhook_timeout_s: float = Field(
        default=5.0,
        gt=0,
        description="webhook 调用超时（秒）",
    )


def _read_number(env_var: str, field: str, cast, kwargs: dict) -> None:
    """读取数值型环境变量，非法值或越界值记录告警并回退默认值"""
    val = os.environ.get(env_var)
    if not val:
        return
    try:
        value = cast(val)
        # 单字段按 EngineConfig 的约束校验（ValidationError 是 ValueError 子类）
        EngineConfig.model_validate({field: value})
    except ValueError:
        log.warning(
            "invalid_engine_config",
            env_var=env_var,
            value=val,
            fallback=EngineConfig.model_fields[field].default,
        )
        return
    kwargs[field] = value


def load_engine_config() -> EngineConfig:
    """从环境变量加载引擎配置

    Returns:
        EngineConfig 实例
    """
    kwargs: dict = {}

    _read_number("TASKLINE_SUBSTRATE_TIMEOUT_S", "substrate_timeout_s", float, kwargs)
    _read_number("TASKLINE_BULK_CONCURRENCY", "bulk_concurrency", int, kwargs)
    _read_number("TASKLINE_WEBHOOK_TIMEOUT_S", "webhook_timeout_s", float, kwargs)

    if val := os.environ.get("TASKLINE_CYCLE_CHECK"):
        if val in ("full", "direct"):
            kwargs["cycle_check"] = val
        else:
            log.warning(
                "invalid_engine_config",
                env_var="TASKLINE_CYCLE_CHECK",
                value=val,
                fallback="full",
            )

    if val := os.environ.get("TASKLINE_AUTOMATION_WEBHOOK_URL"):
        kwargs["automation_webhook_url"] = val

    if val := os.environ.get("TASKLINE_GAMIFICATION_WEBHOOK_URL"):
        kwargs["gamification_webhook_url"] = val

    return EngineConfig(**kwargs)
