"""TraceMiddleware -- 任务级追踪

路径形如 /api/tasks/{task_id}/... 时绑定 trace_id=trace-{task_id}，
同一任务上的所有操作日志可按 trace_id 串联。
"""

import re

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID：26 位 Crockford base32
_TASK_PATH = re.compile(r"/api/tasks/([0-9A-HJKMNP-TV-Z]{26})(?:/|$)")


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        match = _TASK_PATH.search(request.url.path)
        if match:
            structlog.contextvars.bind_contextvars(trace_id=f"trace-{match.group(1)}")

        return await call_next(request)
