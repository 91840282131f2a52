"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

服务实例通过 app.state 管理，在 lifespan 中初始化/清理。
操作者身份来自 X-User-ID 请求头；缺失时为 None，由引擎抛出 AuthenticationRequired。
"""

from fastapi import Header, Request
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Actor
from taskline.core.store import StoreGroup


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_manager(request: Request) -> TaskLifecycleManager:
    """从 app.state 获取 TaskLifecycleManager 实例"""
    return request.app.state.manager


def get_actor(
    x_user_id: str | None = Header(default=None, alias="X-User-ID"),
) -> Actor | None:
    """从请求头解析操作者"""
    if not x_user_id or not x_user_id.strip():
        return None
    return Actor(user_id=x_user_id.strip())
