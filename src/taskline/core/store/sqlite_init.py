"""SQLite 数据库初始化

PRAGMA 配置 + 四张表 DDL + 索引创建。使用 aiosqlite 异步操作。

依赖行（task_dependencies / task_comments / task_time_logs）引用 tasks(id)
且不带 ON DELETE CASCADE：删除仍被引用的任务会触发外键冲突，
由 permanent_delete 负责级联清理后重试。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    description     TEXT,
    status          TEXT NOT NULL DEFAULT 'todo',
    priority        TEXT,
    type            TEXT,
    due_date        TEXT,
    scheduled_time  TEXT,
    start_time      TEXT,
    end_time        TEXT,
    duration        INTEGER,
    agenda          TEXT,
    recurrence      TEXT,
    recurrence_end  TEXT,
    team_id         TEXT,
    assigned_to     TEXT,
    claimed_by      TEXT,
    claimed_at      TEXT,
    blocked_reason  TEXT,
    category_id     TEXT,
    project_id      TEXT,
    context_id      TEXT,
    tags            TEXT NOT NULL DEFAULT '[]',
    archived_at     TEXT,
    deleted_at      TEXT,
    completed_at    TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_user_id ON tasks(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_team_status ON tasks(team_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_soft_state ON tasks(deleted_at, archived_at);",
]

# task_dependencies 表 DDL
_DEPENDENCIES_DDL = """
CREATE TABLE IF NOT EXISTS task_dependencies (
    id          TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    blocker_id  TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id),
    FOREIGN KEY (blocker_id) REFERENCES tasks(id)
);
"""

_DEPENDENCIES_INDEXES = [
    # 同一条边只允许存在一次
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_dependencies_edge "
        "ON task_dependencies(task_id, blocker_id);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_dependencies_blocker ON task_dependencies(blocker_id);",
]

# task_comments 表 DDL
_COMMENTS_DDL = """
CREATE TABLE IF NOT EXISTS task_comments (
    id          TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    content     TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

# task_time_logs 表 DDL
_TIME_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS task_time_logs (
    id          TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    minutes     INTEGER NOT NULL DEFAULT 0,
    note        TEXT,
    created_at  TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(id)
);
"""

_CHILD_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_comments_task_id ON task_comments(task_id);",
    "CREATE INDEX IF NOT EXISTS idx_time_logs_task_id ON task_time_logs(task_id);",
]

# 集合 -> 列名（写入白名单 + 过滤/排序字段白名单）
COLLECTION_COLUMNS: dict[str, frozenset[str]] = {
    "tasks": frozenset(
        {
            "id", "user_id", "title", "description", "status", "priority", "type",
            "due_date", "scheduled_time", "start_time", "end_time", "duration",
            "agenda", "recurrence", "recurrence_end", "team_id", "assigned_to",
            "claimed_by", "claimed_at", "blocked_reason", "category_id",
            "project_id", "context_id", "tags", "archived_at", "deleted_at",
            "completed_at", "created_at", "updated_at",
        }
    ),
    "task_dependencies": frozenset(
        {"id", "task_id", "blocker_id", "user_id", "created_at"}
    ),
    "task_comments": frozenset({"id", "task_id", "user_id", "content", "created_at"}),
    "task_time_logs": frozenset(
        {"id", "task_id", "user_id", "minutes", "note", "created_at"}
    ),
}

# 以 JSON 文本存储的列
JSON_COLUMNS: dict[str, frozenset[str]] = {
    "tasks": frozenset({"tags"}),
}


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_TASKS_DDL)
    await conn.execute(_DEPENDENCIES_DDL)
    await conn.execute(_COMMENTS_DDL)
    await conn.execute(_TIME_LOGS_DDL)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _DEPENDENCIES_INDEXES + _CHILD_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_foreign_keys(conn: aiosqlite.Connection) -> bool:
    """验证外键约束是否生效

    Returns:
        True 如果 foreign_keys 已启用
    """
    cursor = await conn.execute("PRAGMA foreign_keys;")
    row = await cursor.fetchone()
    return row is not None and row[0] == 1
