"""领域异常 -> HTTP 错误响应

错误体统一为 {"error": {"code": ..., "message": ...}}。
"""

import structlog
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse
from taskline.core.exceptions import (
    AuthenticationRequired,
    ConditionFailed,
    InvalidDependency,
    InvalidOperation,
    NotAvailable,
    NotFound,
    ReferenceConflict,
    SubstrateFailure,
    TasklineError,
    Unauthorized,
)

log = structlog.get_logger()

# 按 MRO 顺序匹配，子类在前
_STATUS_CODES: list[tuple[type[TasklineError], int]] = [
    (AuthenticationRequired, 401),
    (Unauthorized, 403),
    (NotAvailable, 409),
    (InvalidDependency, 422),
    (InvalidOperation, 409),
    (NotFound, 404),
    (ReferenceConflict, 409),
    (ConditionFailed, 409),
    (SubstrateFailure, 503),
]


def status_code_for(error: TasklineError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def taskline_error_handler(request: Request, exc: TasklineError) -> JSONResponse:
    """将 TasklineError 转换为 JSON 错误响应"""
    status_code = status_code_for(exc)
    if status_code >= 500:
        log.error(
            "request_failed",
            error_code=exc.code,
            error=exc.message,
            recoverable=exc.recoverable,
        )
    else:
        log.info("request_rejected", error_code=exc.code, status_code=status_code)
    return error_response(status_code, exc.code, exc.message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TasklineError, taskline_error_handler)
