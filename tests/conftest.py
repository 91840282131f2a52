"""全局 pytest 配置 -- 临时 SQLite 数据库 + 引擎 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from taskline.core.config import EngineConfig
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Actor, Task
from taskline.core.notifications import NotificationHub
from taskline.core.store import StoreGroup, create_store_group


class RecordingGamification:
    """记录 on_task_completed 调用的协作方"""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def on_task_completed(self, task_id: str, user_id: str) -> None:
        self.calls.append((task_id, user_id))


class RecordingAutomation:
    """记录 notify_critical_task 调用的协作方"""

    def __init__(self) -> None:
        self.tasks: list[Task] = []

    async def notify_critical_task(self, task: Task) -> None:
        self.tasks.append(task)


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from taskline.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "conn.db"))
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    group = await create_store_group(str(tmp_db_path), timeout_s=5.0)
    yield group
    await group.close()


@pytest.fixture
def gamification() -> RecordingGamification:
    return RecordingGamification()


@pytest.fixture
def automation() -> RecordingAutomation:
    return RecordingAutomation()


@pytest.fixture
def hub(gamification, automation) -> NotificationHub:
    hub = NotificationHub()
    hub.register_gamification(gamification)
    hub.register_automation(automation)
    return hub


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(substrate_timeout_s=5.0, bulk_concurrency=4)


@pytest.fixture
def manager(store_group, hub, engine_config) -> TaskLifecycleManager:
    return TaskLifecycleManager(store_group.gateway, hub=hub, config=engine_config)


@pytest.fixture
def alice() -> Actor:
    return Actor(user_id="user-alice")


@pytest.fixture
def bob() -> Actor:
    return Actor(user_id="user-bob")
