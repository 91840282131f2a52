"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、通知 hub 与协作方注册、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from taskline.core.config import EngineConfig, get_db_path, load_engine_config
from taskline.core.manager import TaskLifecycleManager
from taskline.core.notifications import NotificationHub
from taskline.core.store import StoreGroup, create_store_group

from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import blockers, bulk, health, pool, tasks
from .services.webhook_notifier import AutomationWebhook, GamificationWebhook

log = structlog.get_logger()


def build_notification_hub(config: EngineConfig) -> NotificationHub:
    """按配置注册 webhook 协作方；URL 为空的协作方不注册"""
    hub = NotificationHub()
    if config.gamification_webhook_url:
        hub.register_gamification(
            GamificationWebhook(config.gamification_webhook_url, config.webhook_timeout_s)
        )
    if config.automation_webhook_url:
        hub.register_automation(
            AutomationWebhook(config.automation_webhook_url, config.webhook_timeout_s)
        )
    return hub


def attach_engine(
    app: FastAPI,
    store_group: StoreGroup,
    config: EngineConfig,
    hub: NotificationHub | None = None,
) -> TaskLifecycleManager:
    """将 StoreGroup、通知 hub 与 TaskLifecycleManager 挂到 app.state"""
    hub = hub if hub is not None else build_notification_hub(config)
    manager = TaskLifecycleManager(store_group.gateway, hub=hub, config=config)
    app.state.store_group = store_group
    app.state.notification_hub = hub
    app.state.manager = manager
    return manager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与引擎，关闭时等待在途通知并关闭连接"""
    config = load_engine_config()
    db_path = get_db_path()
    store_group = await create_store_group(db_path, timeout_s=config.substrate_timeout_s)
    manager = attach_engine(app, store_group, config)
    log.info(
        "engine_initialized",
        db_path=db_path,
        cycle_check=config.cycle_check,
        bulk_concurrency=config.bulk_concurrency,
        gamification_webhook=bool(config.gamification_webhook_url),
        automation_webhook=bool(config.automation_webhook_url),
    )

    yield

    await manager.hub.drain()
    await store_group.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Taskline Gateway",
        version="0.1.0",
        description="Taskline 任务生命周期引擎 API",
        lifespan=lifespan,
    )

    # 注册中间件（LoggingMiddleware 在外层，先清理再绑定 contextvars）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    register_error_handlers(app)

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(pool.router, tags=["pool"])
    app.include_router(blockers.router, tags=["blockers"])
    app.include_router(bulk.router, tags=["bulk"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
