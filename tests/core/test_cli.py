"""CLI 命令测试"""

import sys
from pathlib import Path

import pytest
from taskline.core.__main__ import empty_trash, init_database, main
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Actor, TaskView
from taskline.core.store import create_store_group


@pytest.fixture
def cli_db(tmp_path: Path, monkeypatch) -> str:
    db_path = str(tmp_path / "cli" / "taskline.db")
    monkeypatch.setenv("TASKLINE_DB_PATH", db_path)
    return db_path


class TestCli:
    async def test_init_database(self, cli_db, capsys):
        await init_database()
        assert Path(cli_db).exists()
        assert "初始化完成" in capsys.readouterr().out

    async def test_empty_trash(self, cli_db, capsys):
        actor = Actor(user_id="user-alice")
        group = await create_store_group(cli_db)
        manager = TaskLifecycleManager(group.gateway)
        task = await manager.create(actor, {"title": "old"})
        await manager.move_to_trash(actor, task.id)
        await group.close()

        await empty_trash("user-alice")
        assert "删除 1 个任务" in capsys.readouterr().out

        group = await create_store_group(cli_db)
        try:
            manager = TaskLifecycleManager(group.gateway)
            assert await manager.list_tasks(actor, TaskView.TRASH) == []
        finally:
            await group.close()

    def test_unknown_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["taskline", "compact"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "未知命令" in capsys.readouterr().out
