"""Dependency Graph Manager -- 任务间 "blocks" 关系

一条边 (task_id, blocker_id) 表示 blocker_id 必须先于 task_id 完成。
插入时拒绝自环、重复边与环：
- direct: 仅检查反向边 (blocker_id -> task_id)，三节点及以上的环不会被发现
- full: 从 blocker_id 出发沿已有边做广度优先可达性扫描，task_id 可达即拒绝
"""

from collections import deque
from typing import Literal

import structlog

from .exceptions import InvalidDependency
from .filters import FilterBuilder
from .models.context import Actor, require_actor
from .models.dependency import Dependency
from .models.enums import Collection
from .store.protocols import RecordGateway

log = structlog.get_logger()

CycleCheck = Literal["full", "direct"]


class DependencyGraph:
    """阻塞边管理"""

    def __init__(self, gateway: RecordGateway, cycle_check: CycleCheck = "full") -> None:
        self._gateway = gateway
        self._cycle_check = cycle_check

    async def get_blockers(self, task_id: str) -> list[Dependency]:
        """上游依赖：task_id 被哪些任务阻塞"""
        records = await self._gateway.list(
            Collection.DEPENDENCIES,
            FilterBuilder().equals("task_id", task_id).build(),
            sort="created_at,id",
        )
        return [Dependency.from_record(r) for r in records]

    async def get_blocked_tasks(self, task_id: str) -> list[Dependency]:
        """下游依赖：task_id 阻塞了哪些任务"""
        records = await self._gateway.list(
            Collection.DEPENDENCIES,
            FilterBuilder().equals("blocker_id", task_id).build(),
            sort="created_at,id",
        )
        return [Dependency.from_record(r) for r in records]

    async def _edge_exists(self, task_id: str, blocker_id: str) -> bool:
        records = await self._gateway.list(
            Collection.DEPENDENCIES,
            FilterBuilder()
            .equals("task_id", task_id)
            .equals("blocker_id", blocker_id)
            .build(),
        )
        return bool(records)

    async def _reachable(self, start: str, target: str) -> bool:
        """沿 blocker 边判断 target 是否可从 start 到达

        从 start 出发，每一步走到“阻塞 start 的任务”，即 get_blockers 的方向。
        若 task_id 可达，则 blocker_id 已（间接）依赖 task_id，新边会成环。
        """
        seen = {start}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for edge in await self.get_blockers(node):
                if edge.blocker_id == target:
                    return True
                if edge.blocker_id not in seen:
                    seen.add(edge.blocker_id)
                    queue.append(edge.blocker_id)
        return False

    async def add_blocker(self, actor: Actor, task_id: str, blocker_id: str) -> Dependency:
        """插入阻塞边 (task_id, blocker_id)

        所有校验在写入之前完成。

        Raises:
            AuthenticationRequired: 缺少操作者
            InvalidDependency: 自阻塞、重复边、反向边已存在或（full 模式）成环
        """
        actor = require_actor(actor)

        if task_id == blocker_id:
            raise InvalidDependency("A task cannot block itself")

        if await self._edge_exists(blocker_id, task_id):
            raise InvalidDependency(
                f"Task {blocker_id} is already blocked by {task_id}"
            )

        if await self._edge_exists(task_id, blocker_id):
            raise InvalidDependency(
                f"Task {task_id} is already blocked by {blocker_id}"
            )

        if self._cycle_check == "full" and await self._reachable(blocker_id, task_id):
            raise InvalidDependency(
                f"Blocking {task_id} on {blocker_id} would create a cycle"
            )

        record = await self._gateway.create(
            Collection.DEPENDENCIES,
            {
                "task_id": task_id,
                "blocker_id": blocker_id,
                "user_id": actor.user_id,
            },
        )
        log.info(
            "blocker_added",
            task_id=task_id,
            blocker_id=blocker_id,
            user_id=actor.user_id,
        )
        return Dependency.from_record(record)

    async def remove_blocker(self, edge_id: str) -> None:
        """删除阻塞边

        Raises:
            NotFound: 边不存在
        """
        await self._gateway.delete(Collection.DEPENDENCIES, edge_id)
        log.info("blocker_removed", edge_id=edge_id)

    async def delete_edges_for_task(self, task_id: str) -> int:
        """删除所有涉及 task_id 的边（作为阻塞方或被阻塞方）

        Returns:
            删除的边数
        """
        edges = await self._gateway.list(
            Collection.DEPENDENCIES,
            FilterBuilder()
            .or_(lambda g: g.equals("task_id", task_id).equals("blocker_id", task_id))
            .build(),
        )
        for edge in edges:
            await self._gateway.delete(Collection.DEPENDENCIES, edge["id"])
        return len(edges)
