"""TaskLifecycleManager 测试

测试内容：
1. 创建/更新的字段处理与状态规则
2. 完成副作用：recurrence 后继 + gamification 通知，失败不影响主操作
3. soft-state 与列表视图
4. 团队 pool 认领/释放（含并发认领）
5. 永久删除的级联清理
6. 批量操作的部分失败
"""

import asyncio
from datetime import date

import pytest
from taskline.core.exceptions import (
    AuthenticationRequired,
    InvalidDependency,
    InvalidOperation,
    NotAvailable,
    NotFound,
    ReferenceConflict,
    SubstrateFailure,
    Unauthorized,
)
from taskline.core.lifecycle import soft_state
from taskline.core.manager import TaskLifecycleManager
from taskline.core.models import Collection, SoftState, TaskStatus, TaskView
from taskline.core.notifications import NotificationHub


class FailingGamification:
    async def on_task_completed(self, task_id: str, user_id: str) -> None:
        raise RuntimeError("gamification down")


class TasksUndeletableGateway:
    """tasks 表的删除始终报引用冲突，其余调用透传"""

    def __init__(self, inner) -> None:
        self._inner = inner
        self.task_delete_attempts = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def delete(self, collection, record_id):
        if collection == Collection.TASKS:
            self.task_delete_attempts += 1
            raise ReferenceConflict(f"{record_id} is still referenced")
        await self._inner.delete(collection, record_id)


async def _pool_task(manager, actor, title="Pool item", team_id="team-1"):
    return await manager.create_pool_task(actor, {"title": title}, team_id)


class TestCreate:
    async def test_defaults(self, manager, alice):
        task = await manager.create(alice, {"title": "Write docs"})
        assert task.status is TaskStatus.TODO
        assert task.user_id == alice.user_id
        assert task.completed_at is None
        assert soft_state(task) is SoftState.ACTIVE

    async def test_requires_actor(self, manager):
        with pytest.raises(AuthenticationRequired):
            await manager.create(None, {"title": "x"})

    async def test_empty_strings_become_none(self, manager, alice):
        task = await manager.create(
            alice, {"title": "x", "description": "", "priority": "", "due_date": ""}
        )
        assert task.description == ""
        assert task.priority is None
        assert task.due_date is None

    async def test_read_only_fields_rejected(self, manager, alice):
        with pytest.raises(InvalidOperation, match="completed_at"):
            await manager.create(alice, {"title": "x", "completed_at": "2024-05-01T00:00:00"})

    async def test_invalid_values_rejected_before_write(self, manager, alice):
        with pytest.raises(InvalidOperation):
            await manager.create(alice, {"title": "x", "recurrence": "hourly"})
        assert await manager.list_tasks(alice, TaskView.ALL) == []

    async def test_created_done_has_completed_at(self, manager, alice):
        task = await manager.create(alice, {"title": "x", "status": "done"})
        assert task.completed_at is not None

    async def test_critical_task_notifies_automation(self, manager, alice, automation):
        task = await manager.create(alice, {"title": "Outage", "priority": "urgent"})
        await manager.create(alice, {"title": "Chores", "priority": "low"})
        await manager.hub.drain()
        assert [t.id for t in automation.tasks] == [task.id]


class TestUpdate:
    async def test_completion_sets_completed_at_and_notifies(self, manager, alice, gamification):
        task = await manager.create(alice, {"title": "x"})
        done = await manager.update(alice, task.id, {"status": "done"})
        assert done.completed_at is not None
        await manager.hub.drain()
        assert gamification.calls == [(task.id, alice.user_id)]

    async def test_reopen_clears_completed_at(self, manager, alice):
        task = await manager.create(alice, {"title": "x", "status": "done"})
        reopened = await manager.update(alice, task.id, {"status": "in_progress"})
        assert reopened.completed_at is None

    async def test_blocked_reason_cleared(self, manager, alice):
        task = await manager.create(
            alice, {"title": "x", "status": "blocked", "blocked_reason": "waiting"}
        )
        updated = await manager.update(alice, task.id, {"status": "todo"})
        assert updated.blocked_reason is None

    async def test_update_missing(self, manager, alice):
        with pytest.raises(NotFound):
            await manager.update(alice, "missing", {"title": "x"})

    async def test_unknown_field(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        with pytest.raises(InvalidOperation):
            await manager.update(alice, task.id, {"nickname": "x"})


class TestRecurrence:
    async def test_daily_successor(self, manager, alice):
        """Report 每日重复：5/1 完成后生成 5/2 的 todo 任务"""
        task = await manager.create(
            alice,
            {"title": "Report", "due_date": "2024-05-01", "recurrence": "daily", "tags": ["w"]},
        )
        await manager.update(alice, task.id, {"status": "done"})

        tasks = await manager.list_tasks(alice, TaskView.ALL)
        successors = [t for t in tasks if t.id != task.id]
        assert len(successors) == 1
        successor = successors[0]
        assert successor.title == "Report"
        assert successor.due_date == date(2024, 5, 2)
        assert successor.status is TaskStatus.TODO
        assert successor.recurrence == "daily"
        assert successor.completed_at is None
        assert successor.tags == []

    async def test_resaving_done_spawns_nothing(self, manager, alice, gamification):
        task = await manager.create(
            alice, {"title": "Report", "due_date": "2024-05-01", "recurrence": "daily"}
        )
        await manager.update(alice, task.id, {"status": "done"})
        await manager.update(alice, task.id, {"status": "done", "title": "Report v2"})
        await manager.hub.drain()

        assert len(await manager.list_tasks(alice, TaskView.ALL)) == 2
        assert len(gamification.calls) == 1

    async def test_end_date_terminates(self, manager, alice):
        task = await manager.create(
            alice,
            {
                "title": "Report",
                "due_date": "2024-05-01",
                "recurrence": "weekly",
                "recurrence_end": "2024-05-05",
            },
        )
        await manager.update(alice, task.id, {"status": "done"})
        assert len(await manager.list_tasks(alice, TaskView.ALL)) == 1

    async def test_spawn_failure_does_not_fail_update(
        self, manager, alice, gamification, monkeypatch
    ):
        async def broken(gateway, task):
            raise RuntimeError("substrate hiccup")

        monkeypatch.setattr("taskline.core.manager.spawn_successor", broken)
        task = await manager.create(
            alice, {"title": "Report", "due_date": "2024-05-01", "recurrence": "daily"}
        )
        done = await manager.update(alice, task.id, {"status": "done"})
        assert done.status is TaskStatus.DONE
        await manager.hub.drain()
        assert gamification.calls == [(task.id, alice.user_id)]

    async def test_upcoming_occurrences_capped(self, manager, alice):
        task = await manager.create(
            alice, {"title": "Standup", "due_date": "2024-05-01", "recurrence": "daily"}
        )
        occurrences = await manager.upcoming_occurrences(alice, task.id, limit=500)
        assert len(occurrences) == 50
        assert occurrences[0].due_date == date(2024, 5, 2)


class TestNotificationFailure:
    async def test_collaborator_failure_is_isolated(self, store_group, engine_config, alice):
        hub = NotificationHub()
        hub.register_gamification(FailingGamification())
        manager = TaskLifecycleManager(store_group.gateway, hub=hub, config=engine_config)

        task = await manager.create(alice, {"title": "x"})
        done = await manager.update(alice, task.id, {"status": "done"})
        await hub.drain()
        assert done.status is TaskStatus.DONE
        assert (await manager.get(alice, task.id)).status is TaskStatus.DONE


class TestSoftState:
    async def test_archive_and_restore(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        archived = await manager.archive(alice, task.id)
        assert soft_state(archived) is SoftState.ARCHIVED
        assert archived.status is TaskStatus.TODO

        restored = await manager.restore(alice, task.id)
        assert restored.archived_at is None
        assert soft_state(restored) is SoftState.ACTIVE

    async def test_views(self, manager, alice, bob):
        active = await manager.create(alice, {"title": "active"})
        archived = await manager.create(alice, {"title": "archived"})
        trashed = await manager.create(alice, {"title": "trashed"})
        await manager.create(bob, {"title": "not mine"})
        await manager.archive(alice, archived.id)
        await manager.move_to_trash(alice, trashed.id)

        async def titles(view):
            return {t.title for t in await manager.list_tasks(alice, view)}

        assert await titles(TaskView.ACTIVE) == {active.title}
        assert await titles(TaskView.ARCHIVE) == {archived.title}
        assert await titles(TaskView.TRASH) == {trashed.title}
        assert await titles(TaskView.ALL) == {active.title, archived.title}

    async def test_archive_after_trash_stays_in_trash(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        await manager.move_to_trash(alice, task.id)
        await manager.archive(alice, task.id)

        assert [t.id for t in await manager.list_tasks(alice, TaskView.TRASH)] == [task.id]
        assert await manager.list_tasks(alice, TaskView.ARCHIVE) == []

    async def test_restore_from_trash_clears_both(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        await manager.archive(alice, task.id)
        await manager.move_to_trash(alice, task.id)
        restored = await manager.restore(alice, task.id)
        assert restored.archived_at is None
        assert restored.deleted_at is None

    async def test_list_filters(self, manager, alice):
        await manager.create(alice, {"title": "sync", "type": "meeting", "context_id": "ws"})
        await manager.create(alice, {"title": "code", "context_id": "ws"})
        meetings = await manager.list_tasks(alice, TaskView.ACTIVE, context_id="ws", type="meeting")
        assert [t.title for t in meetings] == ["sync"]

    async def test_unknown_view(self, manager, alice):
        with pytest.raises(InvalidOperation):
            await manager.list_tasks(alice, "recent")

    async def test_soft_state_on_missing_task(self, manager, alice):
        with pytest.raises(NotFound):
            await manager.archive(alice, "missing")


class TestPool:
    async def test_pool_listing(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        await _pool_task(manager, alice, team_id="team-2")
        await manager.create(alice, {"title": "personal"})

        listed = await manager.list_pool_tasks(bob, "team-1")
        assert [t.id for t in listed] == [pooled.id]
        assert listed[0].status is TaskStatus.UNASSIGNED

    async def test_claim(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        claimed = await manager.claim_task(bob, pooled.id)
        assert claimed.status is TaskStatus.TODO
        assert claimed.assigned_to == bob.user_id
        assert claimed.claimed_by == bob.user_id
        assert claimed.user_id == bob.user_id
        assert claimed.claimed_at is not None
        assert await manager.list_pool_tasks(bob, "team-1") == []

    async def test_claim_non_pool_task(self, manager, alice):
        task = await manager.create(alice, {"title": "personal"})
        with pytest.raises(NotAvailable):
            await manager.claim_task(alice, task.id)

    async def test_claim_already_claimed(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        await manager.claim_task(bob, pooled.id)
        with pytest.raises(NotAvailable):
            await manager.claim_task(alice, pooled.id)

    async def test_claim_requires_unassigned_status(self, manager, alice):
        pooled = await _pool_task(manager, alice)
        await manager.update(alice, pooled.id, {"status": "in_progress"})
        with pytest.raises(NotAvailable):
            await manager.claim_task(alice, pooled.id)

    async def test_concurrent_claims_single_winner(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        results = await asyncio.gather(
            manager.claim_task(alice, pooled.id),
            manager.claim_task(bob, pooled.id),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], NotAvailable)

        current = await manager.get(alice, pooled.id)
        assert current.assigned_to == winners[0].assigned_to

    async def test_release_with_reason(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        await manager.claim_task(bob, pooled.id)

        released = await manager.release_task(bob, pooled.id, reason="out sick")
        assert released.status is TaskStatus.UNASSIGNED
        assert released.assigned_to is None
        assert released.claimed_by is None
        assert released.claimed_at is None

        comments = await manager.list_comments(bob, pooled.id)
        assert [c.content for c in comments] == ["Task released: out sick"]
        assert comments[0].user_id == bob.user_id

    async def test_release_without_reason_adds_no_comment(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        await manager.claim_task(bob, pooled.id)
        await manager.release_task(bob, pooled.id)
        assert await manager.list_comments(bob, pooled.id) == []

    async def test_release_by_non_assignee(self, manager, alice, bob):
        pooled = await _pool_task(manager, alice)
        await manager.claim_task(bob, pooled.id)
        with pytest.raises(Unauthorized):
            await manager.release_task(alice, pooled.id)

    async def test_release_non_team_task(self, manager, alice):
        task = await manager.create(alice, {"title": "personal"})
        with pytest.raises(InvalidOperation):
            await manager.release_task(alice, task.id)

    async def test_pool_task_requires_team(self, manager, alice):
        with pytest.raises(InvalidOperation):
            await manager.create_pool_task(alice, {"title": "x"}, "")


class TestBlockers:
    async def test_blocker_endpoints_must_exist(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        with pytest.raises(NotFound):
            await manager.add_blocker(alice, task.id, "missing")

    async def test_add_remove(self, manager, alice):
        a = await manager.create(alice, {"title": "a"})
        b = await manager.create(alice, {"title": "b"})
        edge = await manager.add_blocker(alice, a.id, b.id)
        assert [e.id for e in await manager.get_blocked_tasks(alice, b.id)] == [edge.id]
        with pytest.raises(InvalidDependency):
            await manager.add_blocker(alice, b.id, a.id)
        await manager.remove_blocker(alice, edge.id)
        assert await manager.get_blockers(alice, a.id) == []


class TestCommentsAndTimeLogs:
    async def test_comment_and_time_log(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        await manager.add_comment(alice, task.id, "first")
        await manager.log_time(alice, task.id, 25, note="review")
        assert [c.content for c in await manager.list_comments(alice, task.id)] == ["first"]
        logs = await manager.list_time_logs(alice, task.id)
        assert [(log.minutes, log.note) for log in logs] == [(25, "review")]

    async def test_empty_comment_rejected(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        with pytest.raises(InvalidOperation):
            await manager.add_comment(alice, task.id, "   ")

    async def test_negative_minutes_rejected(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        with pytest.raises(InvalidOperation):
            await manager.log_time(alice, task.id, -5)

    async def test_comment_on_missing_task(self, manager, alice):
        with pytest.raises(NotFound):
            await manager.add_comment(alice, "missing", "hi")


class TestPermanentDelete:
    async def test_plain_delete(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        await manager.permanent_delete(alice, task.id)
        with pytest.raises(NotFound):
            await manager.get(alice, task.id)

    async def test_cascades_dependent_rows(self, manager, store_group, alice):
        task = await manager.create(alice, {"title": "x"})
        upstream = await manager.create(alice, {"title": "upstream"})
        downstream = await manager.create(alice, {"title": "downstream"})
        await manager.add_comment(alice, task.id, "note")
        await manager.log_time(alice, task.id, 10)
        await manager.add_blocker(alice, task.id, upstream.id)
        await manager.add_blocker(alice, downstream.id, task.id)

        await manager.permanent_delete(alice, task.id)

        gateway = store_group.gateway
        for collection in (Collection.COMMENTS, Collection.TIME_LOGS, Collection.DEPENDENCIES):
            assert await gateway.list(collection) == []
        # 其他任务不受影响
        assert (await manager.get(alice, upstream.id)).id == upstream.id
        assert (await manager.get(alice, downstream.id)).id == downstream.id

    async def test_retry_failure_surfaces_substrate_failure(
        self, store_group, hub, engine_config, alice
    ):
        """级联清理后重试仍失败：抛出 SubstrateFailure，依赖行已清理，只重试一次"""
        gateway = TasksUndeletableGateway(store_group.gateway)
        manager = TaskLifecycleManager(gateway, hub=hub, config=engine_config)
        task = await manager.create(alice, {"title": "x"})
        other = await manager.create(alice, {"title": "other"})
        await manager.add_comment(alice, task.id, "note")
        await manager.log_time(alice, task.id, 10)
        await manager.add_blocker(alice, other.id, task.id)

        with pytest.raises(SubstrateFailure) as exc_info:
            await manager.permanent_delete(alice, task.id)

        assert not isinstance(exc_info.value, ReferenceConflict)
        assert gateway.task_delete_attempts == 2
        for collection in (Collection.COMMENTS, Collection.TIME_LOGS, Collection.DEPENDENCIES):
            assert await store_group.gateway.list(collection) == []
        assert (await manager.get(alice, task.id)).id == task.id

    async def test_missing_task(self, manager, alice):
        with pytest.raises(NotFound):
            await manager.permanent_delete(alice, "missing")

    async def test_empty_trash(self, manager, alice, bob):
        kept = await manager.create(alice, {"title": "keep"})
        for title in ("a", "b"):
            task = await manager.create(alice, {"title": title})
            await manager.add_comment(alice, task.id, "bye")
            await manager.move_to_trash(alice, task.id)
        other = await manager.create(bob, {"title": "bob's"})
        await manager.move_to_trash(bob, other.id)

        assert await manager.empty_trash(alice) == 2
        assert await manager.list_tasks(alice, TaskView.TRASH) == []
        assert [t.id for t in await manager.list_tasks(alice)] == [kept.id]
        assert [t.id for t in await manager.list_tasks(bob, TaskView.TRASH)] == [other.id]

    async def test_empty_archive_moves_to_trash(self, manager, alice):
        task = await manager.create(alice, {"title": "x"})
        await manager.archive(alice, task.id)

        assert await manager.empty_archive(alice) == 1
        assert await manager.list_tasks(alice, TaskView.ARCHIVE) == []
        assert [t.id for t in await manager.list_tasks(alice, TaskView.TRASH)] == [task.id]


class TestBulk:
    async def test_partial_failure(self, manager, alice):
        a = await manager.create(alice, {"title": "a"})
        b = await manager.create(alice, {"title": "b"})
        result = await manager.bulk_move_to_trash(alice, [a.id, "missing", b.id])

        assert result.succeeded == [a.id, b.id]
        assert result.failed == ["missing"]
        failure = result.items[1]
        assert failure.error_code == "NOT_FOUND"
        assert result.items[0].record["id"] == a.id
        assert len(await manager.list_tasks(alice, TaskView.TRASH)) == 2

    async def test_duplicate_ids_run_once(self, manager, alice):
        a = await manager.create(alice, {"title": "a"})
        result = await manager.bulk_permanent_delete(alice, [a.id, a.id])
        assert [item.id for item in result.items] == [a.id]
        assert result.failed == []

    async def test_bulk_update_runs_side_effects(self, manager, alice, gamification):
        a = await manager.create(alice, {"title": "a"})
        b = await manager.create(alice, {"title": "b"})
        result = await manager.bulk_update(alice, [a.id, b.id], {"status": "done"})
        await manager.hub.drain()

        assert result.failed == []
        assert sorted(call[0] for call in gamification.calls) == sorted([a.id, b.id])

    async def test_bulk_update_rejects_bad_fields_up_front(self, manager, alice):
        a = await manager.create(alice, {"title": "a"})
        with pytest.raises(InvalidOperation):
            await manager.bulk_update(alice, [a.id], {"created_at": "2024-01-01"})

    async def test_bulk_update_rejects_bad_values_up_front(self, manager, alice):
        a = await manager.create(alice, {"title": "a"})
        with pytest.raises(InvalidOperation):
            await manager.bulk_update(alice, [a.id, "missing"], {"status": "bogus"})
        assert (await manager.get(alice, a.id)).status is TaskStatus.TODO

    async def test_bulk_restore(self, manager, alice):
        a = await manager.create(alice, {"title": "a"})
        await manager.move_to_trash(alice, a.id)
        result = await manager.bulk_restore(alice, [a.id])
        assert result.succeeded == [a.id]
        assert [t.id for t in await manager.list_tasks(alice)] == [a.id]

    async def test_bulk_add_tag_idempotent(self, manager, alice):
        a = await manager.create(alice, {"title": "a", "tags": ["home"]})
        b = await manager.create(alice, {"title": "b"})
        await manager.bulk_add_tag(alice, [a.id, b.id], "home")
        await manager.bulk_add_tag(alice, [a.id, b.id], "home")

        assert (await manager.get(alice, a.id)).tags == ["home"]
        assert (await manager.get(alice, b.id)).tags == ["home"]

    async def test_bulk_requires_actor(self, manager):
        with pytest.raises(AuthenticationRequired):
            await manager.bulk_restore(None, ["a"])
