"""TaskLifecycleManager -- 任务生命周期编排

每次变更的流程：
1. 校验操作者身份与字段（失败时不做任何写入）
2. 应用状态机规则（lifecycle.apply_status_rules）
3. 经 RecordGateway 持久化
4. 副作用：recurrence 后继、外部通知；失败只记录日志，不影响主操作

批量操作以信号量限制并发，逐项返回结果，不保证原子性。
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from .config import MAX_VIRTUAL_OCCURRENCES, EngineConfig
from .dependencies import DependencyGraph
from .exceptions import (
    ConditionFailed,
    InvalidOperation,
    NotAvailable,
    SubstrateFailure,
    TasklineError,
    Unauthorized,
)
from .filters import FilterBuilder
from .lifecycle import (
    apply_status_rules,
    archive_fields,
    entered_done,
    restore_fields,
    trash_fields,
    view_filter,
)
from .models.context import Actor, BulkItemResult, BulkResult, require_actor
from .models.dependency import Comment, Dependency, TimeLog
from .models.enums import Collection, TaskStatus, TaskView
from .models.task import WRITABLE_FIELDS, Task
from .notifications import NotificationHub
from .recurrence import VirtualOccurrence, spawn_successor, upcoming_occurrences
from .store.protocols import RecordGateway

log = structlog.get_logger()

# 空字符串保留原值的字段，其余字段的 "" 视为 None
_KEEP_EMPTY_STRING = frozenset({"title", "description"})


class TaskLifecycleManager:
    """任务生命周期编排服务"""

    def __init__(
        self,
        gateway: RecordGateway,
        hub: NotificationHub | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._gateway = gateway
        self._hub = hub or NotificationHub()
        self._config = config or EngineConfig()
        self.dependencies = DependencyGraph(gateway, self._config.cycle_check)

    @property
    def hub(self) -> NotificationHub:
        return self._hub

    # ============================================================
    # 字段处理
    # ============================================================

    @staticmethod
    def _sanitize(data: dict[str, Any] | BaseModel) -> dict[str, Any]:
        """过滤调用方字段：拒绝只读/未知字段，空字符串归一为 None"""
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        unknown = sorted(set(data) - WRITABLE_FIELDS)
        if unknown:
            raise InvalidOperation(f"Unknown or read-only fields: {', '.join(unknown)}")
        return {
            key: (None if value == "" and key not in _KEEP_EMPTY_STRING else value)
            for key, value in data.items()
        }

    @staticmethod
    def _validated(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
        """以 Task 模型校验合并后的记录，返回类型归一后的 changes"""
        try:
            candidate = Task.model_validate({**base, **changes})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise InvalidOperation(f"Invalid task fields: {problems}") from e
        return {key: getattr(candidate, key) for key in changes}

    # ============================================================
    # 创建与查询
    # ============================================================

    async def create(self, actor: Actor, data: dict[str, Any] | BaseModel) -> Task:
        """创建任务

        默认 status=todo、user_id=操作者；critical 任务派发自动化通知。
        """
        actor = require_actor(actor)
        fields = self._sanitize(data)
        if not fields.get("user_id"):
            fields["user_id"] = actor.user_id
        fields = apply_status_rules(None, fields)
        fields = self._validated({"id": ""}, fields)

        record = await self._gateway.create(Collection.TASKS, fields)
        task = Task.from_record(record)
        log.info(
            "task_created",
            task_id=task.id,
            user_id=task.user_id,
            status=task.status.value,
        )

        self._hub.critical_task_created(task)
        return task

    async def create_pool_task(
        self,
        actor: Actor,
        data: dict[str, Any] | BaseModel,
        team_id: str,
    ) -> Task:
        """在团队 pool 中创建待认领任务"""
        fields = self._sanitize(data)
        if not team_id:
            raise InvalidOperation("Pool tasks require a team")
        fields.update(
            team_id=team_id,
            status=TaskStatus.UNASSIGNED,
            assigned_to=None,
            claimed_by=None,
            claimed_at=None,
        )
        return await self.create(actor, fields)

    async def get(self, actor: Actor, task_id: str) -> Task:
        """查询任务

        Raises:
            NotFound: 任务不存在
        """
        require_actor(actor)
        record = await self._gateway.get(Collection.TASKS, task_id)
        return Task.from_record(record)

    async def list_tasks(
        self,
        actor: Actor,
        view: TaskView | str = TaskView.ACTIVE,
        context_id: str | None = None,
        type: str | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[Task]:
        """按视图列出操作者的任务，新建在前"""
        actor = require_actor(actor)
        try:
            view = TaskView(view)
        except ValueError as e:
            raise InvalidOperation(f"Unknown view: {view!r}") from e
        predicate = view_filter(actor.user_id, view, context_id, type, status)
        records = await self._gateway.list(Collection.TASKS, predicate, sort="-created_at,-id")
        return [Task.from_record(r) for r in records]

    async def list_pool_tasks(self, actor: Actor, team_id: str) -> list[Task]:
        """团队 pool 中未被删除的待认领任务"""
        require_actor(actor)
        predicate = (
            FilterBuilder()
            .equals("team_id", team_id)
            .equals("status", TaskStatus.UNASSIGNED)
            .is_empty("deleted_at")
            .build()
        )
        records = await self._gateway.list(Collection.TASKS, predicate, sort="-created_at,-id")
        return [Task.from_record(r) for r in records]

    async def upcoming_occurrences(
        self,
        actor: Actor,
        task_id: str,
        limit: int = MAX_VIRTUAL_OCCURRENCES,
    ) -> list[VirtualOccurrence]:
        """任务未来的虚拟 occurrence（不落库）"""
        task = await self.get(actor, task_id)
        return upcoming_occurrences(task, min(limit, MAX_VIRTUAL_OCCURRENCES))

    # ============================================================
    # 更新与 soft-state
    # ============================================================

    async def update(self, actor: Actor, task_id: str, data: dict[str, Any] | BaseModel) -> Task:
        """更新任务

        由非 done 进入 done 时生成 recurrence 后继并派发完成通知，
        二者失败都只记录日志。
        """
        require_actor(actor)
        previous = await self.get(actor, task_id)
        fields = self._sanitize(data)
        fields = apply_status_rules(previous, fields)
        fields = self._validated(previous.model_dump(), fields)

        record = await self._gateway.update(Collection.TASKS, task_id, fields)
        updated = Task.from_record(record)
        log.info(
            "task_updated",
            task_id=task_id,
            fields=sorted(fields),
            status=updated.status.value,
        )

        if entered_done(previous, updated):
            await self._after_completion(updated)
        return updated

    async def _after_completion(self, task: Task) -> None:
        try:
            await spawn_successor(self._gateway, task)
        except Exception as e:
            log.error(
                "recurrence_spawn_failed",
                task_id=task.id,
                error_type=type(e).__name__,
                error=str(e),
            )
        self._hub.task_completed(task)

    async def _set_soft_state(
        self, actor: Actor, task_id: str, fields: dict[str, Any], event: str
    ) -> Task:
        require_actor(actor)
        record = await self._gateway.update(Collection.TASKS, task_id, fields)
        log.info(event, task_id=task_id)
        return Task.from_record(record)

    async def archive(self, actor: Actor, task_id: str) -> Task:
        return await self._set_soft_state(actor, task_id, archive_fields(), "task_archived")

    async def restore(self, actor: Actor, task_id: str) -> Task:
        """从归档或回收站恢复"""
        return await self._set_soft_state(actor, task_id, restore_fields(), "task_restored")

    async def move_to_trash(self, actor: Actor, task_id: str) -> Task:
        return await self._set_soft_state(actor, task_id, trash_fields(), "task_trashed")

    async def permanent_delete(self, actor: Actor, task_id: str) -> None:
        """永久删除任务

        首次删除因引用冲突失败时，清理依赖行（工时、评论、阻塞边）后重试一次；
        重试仍失败抛出 SubstrateFailure。任务不存在时直接抛出 NotFound。
        """
        require_actor(actor)
        try:
            await self._gateway.delete(Collection.TASKS, task_id)
        except SubstrateFailure as first_error:
            log.warning(
                "permanent_delete_conflict",
                task_id=task_id,
                error_type=type(first_error).__name__,
            )
            await self._delete_dependent_rows(task_id)
            try:
                await self._gateway.delete(Collection.TASKS, task_id)
            except SubstrateFailure as e:
                log.error("permanent_delete_failed", task_id=task_id, error=str(e))
                raise SubstrateFailure(
                    f"Task {task_id} could not be deleted after removing dependent rows"
                ) from e
        log.info("task_deleted", task_id=task_id)

    async def _delete_dependent_rows(self, task_id: str) -> None:
        by_task = FilterBuilder().equals("task_id", task_id).build()
        removed = {}
        for collection in (Collection.TIME_LOGS, Collection.COMMENTS):
            rows = await self._gateway.list(collection, by_task)
            for row in rows:
                await self._gateway.delete(collection, row["id"])
            removed[collection.value] = len(rows)
        removed[Collection.DEPENDENCIES.value] = await self.dependencies.delete_edges_for_task(
            task_id
        )
        log.info("dependent_rows_deleted", task_id=task_id, **removed)

    async def empty_trash(self, actor: Actor) -> int:
        """永久删除操作者回收站中的全部任务

        Returns:
            成功删除的数量
        """
        trashed = await self.list_tasks(actor, TaskView.TRASH)
        result = await self.bulk_permanent_delete(actor, [t.id for t in trashed])
        if result.failed:
            log.warning("empty_trash_partial_failure", failed=result.failed)
        return len(result.succeeded)

    async def empty_archive(self, actor: Actor) -> int:
        """将操作者的全部归档任务移入回收站

        Returns:
            成功移动的数量
        """
        archived = await self.list_tasks(actor, TaskView.ARCHIVE)
        result = await self.bulk_move_to_trash(actor, [t.id for t in archived])
        if result.failed:
            log.warning("empty_archive_partial_failure", failed=result.failed)
        return len(result.succeeded)

    # ============================================================
    # 团队 pool：认领 / 释放
    # ============================================================

    async def claim_task(self, actor: Actor, task_id: str) -> Task:
        """认领 pool 任务

        以 (status, assigned_to) 为条件的 compare-and-swap 更新，
        并发认领只有一方成功。

        Raises:
            NotAvailable: 非 pool 任务、已被认领、状态不是 unassigned 或并发认领失败
        """
        actor = require_actor(actor)
        task = await self.get(actor, task_id)
        if not task.team_id:
            raise NotAvailable(f"Task {task_id} does not belong to a team pool")
        if task.assigned_to:
            raise NotAvailable(f"Task {task_id} is already assigned")
        if task.status is not TaskStatus.UNASSIGNED:
            raise NotAvailable(f"Task {task_id} is not waiting in the pool")

        fields = apply_status_rules(
            task,
            {
                "status": TaskStatus.TODO,
                "assigned_to": actor.user_id,
                "user_id": actor.user_id,
                "claimed_by": actor.user_id,
                "claimed_at": datetime.now(UTC),
            },
        )
        try:
            record = await self._gateway.update(
                Collection.TASKS,
                task_id,
                fields,
                expected={"status": TaskStatus.UNASSIGNED, "assigned_to": None},
            )
        except ConditionFailed as e:
            log.info("task_claim_lost", task_id=task_id, user_id=actor.user_id)
            raise NotAvailable(f"Task {task_id} was claimed by someone else") from e

        log.info("task_claimed", task_id=task_id, user_id=actor.user_id)
        return Task.from_record(record)

    async def release_task(
        self,
        actor: Actor,
        task_id: str,
        reason: str | None = None,
    ) -> Task:
        """将任务释放回团队 pool

        Raises:
            InvalidOperation: 任务不属于团队
            Unauthorized: 操作者不是当前负责人
        """
        actor = require_actor(actor)
        task = await self.get(actor, task_id)
        if not task.team_id:
            raise InvalidOperation(f"Task {task_id} does not belong to a team")
        if task.assigned_to != actor.user_id:
            raise Unauthorized("Only the assignee can release this task")

        fields = apply_status_rules(
            task,
            {
                "status": TaskStatus.UNASSIGNED,
                "assigned_to": None,
                "claimed_by": None,
                "claimed_at": None,
            },
        )
        record = await self._gateway.update(Collection.TASKS, task_id, fields)
        log.info("task_released", task_id=task_id, user_id=actor.user_id)

        if reason:
            await self.add_comment(actor, task_id, f"Task released: {reason}")
        return Task.from_record(record)

    # ============================================================
    # 阻塞关系
    # ============================================================

    async def add_blocker(self, actor: Actor, task_id: str, blocker_id: str) -> Dependency:
        """task_id 被 blocker_id 阻塞；两端任务必须存在"""
        require_actor(actor)
        await self._gateway.get(Collection.TASKS, task_id)
        await self._gateway.get(Collection.TASKS, blocker_id)
        return await self.dependencies.add_blocker(actor, task_id, blocker_id)

    async def remove_blocker(self, actor: Actor, edge_id: str) -> None:
        require_actor(actor)
        await self.dependencies.remove_blocker(edge_id)

    async def get_blockers(self, actor: Actor, task_id: str) -> list[Dependency]:
        require_actor(actor)
        return await self.dependencies.get_blockers(task_id)

    async def get_blocked_tasks(self, actor: Actor, task_id: str) -> list[Dependency]:
        require_actor(actor)
        return await self.dependencies.get_blocked_tasks(task_id)

    # ============================================================
    # 评论与工时
    # ============================================================

    async def add_comment(self, actor: Actor, task_id: str, content: str) -> Comment:
        actor = require_actor(actor)
        if not content or not content.strip():
            raise InvalidOperation("Comment content must not be empty")
        await self._gateway.get(Collection.TASKS, task_id)
        record = await self._gateway.create(
            Collection.COMMENTS,
            {"task_id": task_id, "user_id": actor.user_id, "content": content},
        )
        return Comment.from_record(record)

    async def list_comments(self, actor: Actor, task_id: str) -> list[Comment]:
        require_actor(actor)
        records = await self._gateway.list(
            Collection.COMMENTS,
            FilterBuilder().equals("task_id", task_id).build(),
            sort="created_at,id",
        )
        return [Comment.from_record(r) for r in records]

    async def log_time(
        self,
        actor: Actor,
        task_id: str,
        minutes: int,
        note: str | None = None,
    ) -> TimeLog:
        actor = require_actor(actor)
        if minutes < 0:
            raise InvalidOperation("Logged minutes must not be negative")
        await self._gateway.get(Collection.TASKS, task_id)
        record = await self._gateway.create(
            Collection.TIME_LOGS,
            {"task_id": task_id, "user_id": actor.user_id, "minutes": minutes, "note": note},
        )
        return TimeLog.from_record(record)

    async def list_time_logs(self, actor: Actor, task_id: str) -> list[TimeLog]:
        require_actor(actor)
        records = await self._gateway.list(
            Collection.TIME_LOGS,
            FilterBuilder().equals("task_id", task_id).build(),
            sort="created_at,id",
        )
        return [TimeLog.from_record(r) for r in records]

    # ============================================================
    # 批量操作
    # ============================================================

    async def _fan_out(
        self,
        ids: Sequence[str],
        operation: Callable[[str], Awaitable[Any]],
        event: str,
    ) -> BulkResult:
        """并发执行单条操作，逐项收集结果"""
        semaphore = asyncio.Semaphore(self._config.bulk_concurrency)

        async def run_one(task_id: str) -> BulkItemResult:
            async with semaphore:
                try:
                    outcome = await operation(task_id)
                except TasklineError as e:
                    return BulkItemResult(
                        id=task_id, ok=False, error_code=e.code, error=e.message
                    )
            record = outcome.model_dump(mode="json") if isinstance(outcome, BaseModel) else None
            return BulkItemResult(id=task_id, ok=True, record=record)

        # 同一 id 只执行一次，结果保持首次出现的顺序
        unique_ids = list(dict.fromkeys(ids))
        items = await asyncio.gather(*(run_one(task_id) for task_id in unique_ids))
        result = BulkResult(items=list(items))
        log.info(
            event,
            total=len(items),
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return result

    async def bulk_update(
        self,
        actor: Actor,
        ids: Sequence[str],
        data: dict[str, Any] | BaseModel,
    ) -> BulkResult:
        actor = require_actor(actor)
        fields = self._sanitize(data)
        # 字段取值在派发前按 Task 模型校验一次
        self._validated({"id": "", "user_id": actor.user_id, "title": ""}, fields)
        return await self._fan_out(
            ids, lambda task_id: self.update(actor, task_id, fields), "bulk_update_done"
        )

    async def bulk_move_to_trash(self, actor: Actor, ids: Sequence[str]) -> BulkResult:
        actor = require_actor(actor)
        return await self._fan_out(
            ids, lambda task_id: self.move_to_trash(actor, task_id), "bulk_trash_done"
        )

    async def bulk_restore(self, actor: Actor, ids: Sequence[str]) -> BulkResult:
        actor = require_actor(actor)
        return await self._fan_out(
            ids, lambda task_id: self.restore(actor, task_id), "bulk_restore_done"
        )

    async def bulk_permanent_delete(self, actor: Actor, ids: Sequence[str]) -> BulkResult:
        actor = require_actor(actor)
        return await self._fan_out(
            ids, lambda task_id: self.permanent_delete(actor, task_id), "bulk_delete_done"
        )

    async def bulk_add_tag(self, actor: Actor, ids: Sequence[str], tag_id: str) -> BulkResult:
        """为任务追加标签，已含该标签的任务保持不变"""
        actor = require_actor(actor)
        if not tag_id:
            raise InvalidOperation("Tag id must not be empty")

        async def add_tag(task_id: str) -> Task:
            task = await self.get(actor, task_id)
            if tag_id in task.tags:
                return task
            record = await self._gateway.update(
                Collection.TASKS, task_id, {"tags": [*task.tags, tag_id]}
            )
            return Task.from_record(record)

        return await self._fan_out(ids, add_tag, "bulk_tag_done")
