"""Taskline 异常体系

校验类错误在任何持久化之前同步抛出；
副作用（recurrence、通知）的错误由调用方捕获并记录，不向上传播。
"""


class TasklineError(Exception):
    """Taskline 基础异常"""

    # HTTP 层映射使用的错误码
    code = "TASKLINE_ERROR"

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class AuthenticationRequired(TasklineError):
    """缺少操作者身份"""

    code = "AUTHENTICATION_REQUIRED"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class Unauthorized(TasklineError):
    """操作者与记录归属不一致"""

    code = "UNAUTHORIZED"


class NotAvailable(TasklineError):
    """任务不可认领（非 pool 任务、已被认领或状态不符）"""

    code = "TASK_NOT_AVAILABLE"


class InvalidDependency(TasklineError):
    """非法依赖：自阻塞、重复边或成环"""

    code = "INVALID_DEPENDENCY"


class InvalidOperation(TasklineError):
    """当前记录状态下不允许的操作"""

    code = "INVALID_OPERATION"


class NotFound(TasklineError):
    """记录不存在"""

    code = "NOT_FOUND"

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection} record {record_id} does not exist")
        self.collection = collection
        self.record_id = record_id


class SubstrateFailure(TasklineError):
    """持久化层失败（超时、连接异常、约束冲突等）"""

    code = "SUBSTRATE_FAILURE"

    def __init__(self, message: str, recoverable: bool = True) -> None:
        super().__init__(message, recoverable=recoverable)


class ReferenceConflict(SubstrateFailure):
    """外键引用冲突：仍有依赖行引用该记录

    permanent_delete 捕获此异常后执行级联清理并重试一次。
    """

    code = "REFERENCE_CONFLICT"


class ConditionFailed(SubstrateFailure):
    """条件更新（compare-and-swap）未命中"""

    code = "CONDITION_FAILED"

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(
            f"{collection} record {record_id} changed concurrently",
            recoverable=False,
        )
        self.collection = collection
        self.record_id = record_id
