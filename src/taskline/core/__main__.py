"""CLI 入口模块 -- python -m taskline.core <command>

支持的命令：
  init-db                 初始化数据库表结构
  empty-trash <user_id>   永久删除指定用户回收站中的全部任务
"""

import asyncio
import sys

from .config import get_db_path, load_engine_config

_USAGE = """用法: python -m taskline.core <command>
命令:
  init-db                 初始化数据库表结构
  empty-trash <user_id>   永久删除指定用户回收站中的全部任务"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "empty-trash":
        if len(sys.argv) < 3:
            print("用法: python -m taskline.core empty-trash <user_id>")
            sys.exit(1)
        asyncio.run(empty_trash(sys.argv[2]))
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, empty-trash")
        sys.exit(1)


async def init_database() -> None:
    """创建数据库文件与表结构"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        print("初始化完成")
    finally:
        await store_group.close()


async def empty_trash(user_id: str) -> None:
    """清空指定用户的回收站"""
    from .manager import TaskLifecycleManager
    from .models import Actor
    from .store import create_store_group

    db_path = get_db_path()
    config = load_engine_config()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path, timeout_s=config.substrate_timeout_s)
    try:
        manager = TaskLifecycleManager(store_group.gateway, config=config)
        deleted = await manager.empty_trash(Actor(user_id=user_id))
        print(f"清空完成，删除 {deleted} 个任务")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
