"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、外键约束、数据目录、磁盘空间。
"""

import shutil
from pathlib import Path

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse
from taskline.core.store import verify_foreign_keys

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. foreign_keys: 外键约束已启用（永久删除的级联重试依赖它）
    3. data_dir: 数据库所在目录可访问
    4. disk_space_mb: 磁盘剩余空间
    """
    checks: dict[str, str | int] = {}
    all_ok = True
    store_group = getattr(request.app.state, "store_group", None)

    # 1-2. SQLite 连通性与外键
    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
        if await verify_foreign_keys(store_group.conn):
            checks["foreign_keys"] = "ok"
        else:
            checks["foreign_keys"] = "error: foreign_keys pragma is off"
            all_ok = False
    except Exception as e:
        checks["sqlite"] = f"error: {e}"
        checks["foreign_keys"] = "skipped"
        all_ok = False

    # 3. 数据目录
    db_path = getattr(store_group, "db_path", None)
    data_dir = Path(db_path).parent if db_path else None
    if data_dir is not None and data_dir.is_dir():
        checks["data_dir"] = "ok"
        probe_dir = data_dir
    else:
        checks["data_dir"] = "error: directory does not exist"
        all_ok = False
        probe_dir = Path("/")

    # 4. 磁盘空间
    try:
        disk_usage = shutil.disk_usage(probe_dir)
        disk_space_mb = disk_usage.free // (1024 * 1024)
        checks["disk_space_mb"] = disk_space_mb
    except OSError as e:
        log.warning("disk_usage_check_failed", error=str(e))
        checks["disk_space_mb"] = 0
        all_ok = False

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "checks": checks,
        },
    )
