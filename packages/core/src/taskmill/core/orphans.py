"""OrphanCache -- 等待父任务出现的孤儿事件

按缺失的父任务 ID 分组保存，每个子任务只保留一条事件用于重新挂接。
超过最长保留时间或超出条目预算的分组被释放，子任务保持 orphan 标记。
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from .models.event import Event

log = structlog.get_logger()


@dataclass
class _Waiting:
    inserted_at: float
    children: dict[str, Event] = field(default_factory=dict)


class OrphanCache:
    """孤儿事件缓存"""

    def __init__(
        self,
        max_size: int,
        max_hold_time_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, _Waiting] = OrderedDict()
        self._max_size = max_size
        self._max_hold_time_s = max_hold_time_s
        self._clock = clock
        self._count = 0

    def hold(self, parent_id: str, event: Event) -> None:
        """登记一条父任务未知的事件（同一子任务只登记一次）"""
        waiting = self._entries.get(parent_id)
        if waiting is None:
            waiting = _Waiting(inserted_at=self._clock())
            self._entries[parent_id] = waiting
        child_id = event.task_id or ""
        if child_id not in waiting.children:
            waiting.children[child_id] = event
            self._count += 1

    def claim(self, parent_id: str) -> dict[str, Event]:
        """父任务出现：取走等待它的全部子任务事件"""
        waiting = self._entries.pop(parent_id, None)
        if waiting is None:
            return {}
        self._count -= len(waiting.children)
        return waiting.children

    def release_stale(self) -> int:
        """释放超时或超出预算的分组，返回释放的子任务数"""
        deadline = self._clock() - self._max_hold_time_s
        released = 0
        while self._entries:
            parent_id, waiting = next(iter(self._entries.items()))
            if waiting.inserted_at > deadline and self._count <= self._max_size:
                break
            del self._entries[parent_id]
            self._count -= len(waiting.children)
            released += len(waiting.children)
        if released:
            log.info("orphans_released", released=released, waiting=self._count)
        return released

    def waiting_for(self, parent_id: str) -> bool:
        return parent_id in self._entries

    def __len__(self) -> int:
        return self._count
