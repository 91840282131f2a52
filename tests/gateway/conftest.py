"""gateway 测试配置 -- FastAPI app + httpx AsyncClient

ASGITransport 不触发 lifespan，fixture 手动挂载引擎到 app.state。
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskline.core.config import EngineConfig
from taskline.core.store import create_store_group


@pytest_asyncio.fixture
async def gateway_tmp_dir(tmp_path: Path) -> Path:
    """Gateway 临时数据目录"""
    db_dir = tmp_path / "sqlite"
    db_dir.mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest_asyncio.fixture
async def app(gateway_tmp_dir: Path, hub):
    """创建测试用 FastAPI app 实例，协作方使用记录型替身"""
    db_path = str(gateway_tmp_dir / "sqlite" / "test.db")
    os.environ["TASKLINE_DB_PATH"] = db_path
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from taskline.gateway.main import attach_engine, create_app

    application = create_app()
    store_group = await create_store_group(db_path, timeout_s=5.0)
    attach_engine(
        application,
        store_group,
        EngineConfig(substrate_timeout_s=5.0, bulk_concurrency=4),
        hub,
    )
    yield application

    await hub.drain()
    await store_group.close()
    for key in ["TASKLINE_DB_PATH", "LOGFIRE_SEND_TO_LOGFIRE"]:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient，默认以 user-alice 身份请求"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-ID": "user-alice"},
    ) as ac:
        yield ac
