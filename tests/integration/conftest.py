"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskline.core.config import EngineConfig
from taskline.core.store import create_store_group


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, hub):
    """集成测试用 FastAPI app"""
    db_path = str(tmp_path / "test.db")
    os.environ["TASKLINE_DB_PATH"] = db_path
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from taskline.gateway.main import attach_engine, create_app

    app = create_app()
    store_group = await create_store_group(db_path)
    attach_engine(app, store_group, EngineConfig(), hub)

    yield app

    await hub.drain()
    await store_group.close()
    os.environ.pop("TASKLINE_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
        headers={"X-User-ID": "user-alice"},
    ) as ac:
        yield ac
