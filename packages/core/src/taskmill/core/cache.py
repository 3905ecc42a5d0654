"""TaskCache -- 有界任务缓存

按 task_id 保存合并中的任务。三种预算：条目数、近似权重、最长持有时间。
超出预算时最久未访问的条目先被驱逐。
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

from .models.task import Task

# 每个任务的固定开销估计（字节）
_BASE_WEIGHT = 256
_METRIC_WEIGHT = 32


def estimate_weight(task: Task) -> int:
    """估算任务占用的内存权重（近似序列化字节数）"""
    weight = _BASE_WEIGHT + len(task.name)
    for values in (task.strings, task.text):
        for key, value in values.items():
            weight += len(key) + len(value)
    weight += _METRIC_WEIGHT * len(task.metrics)
    weight += sum(len(item) for item in task.children)
    weight += sum(len(item) for item in task.event_ids)
    return weight


@dataclass
class CacheEntry:
    """缓存条目"""

    task: Task
    inserted_at: float
    weight: int = 0
    dirty: bool = field(default=True)


class TaskCache:
    """有界任务缓存（LRU 顺序 + 插入时间）"""

    def __init__(
        self,
        max_size: int,
        max_weight: int,
        max_hold_time_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._max_weight = max_weight
        self._max_hold_time_s = max_hold_time_s
        self._clock = clock
        self._total_weight = 0

    def get(self, task_id: str) -> CacheEntry | None:
        """查询条目并标记为最近使用"""
        entry = self._entries.get(task_id)
        if entry is not None:
            self._entries.move_to_end(task_id)
        return entry

    def put(self, task: Task) -> CacheEntry:
        """插入新条目（已存在时覆盖）"""
        self.pop(task.task_id)
        entry = CacheEntry(task=task, inserted_at=self._clock())
        self._entries[task.task_id] = entry
        self.reweigh(entry)
        return entry

    def reweigh(self, entry: CacheEntry) -> None:
        """任务内容变化后重新计算权重"""
        new_weight = estimate_weight(entry.task)
        self._total_weight += new_weight - entry.weight
        entry.weight = new_weight

    def pop(self, task_id: str) -> CacheEntry | None:
        entry = self._entries.pop(task_id, None)
        if entry is not None:
            self._total_weight -= entry.weight
        return entry

    def expired_ids(self) -> list[str]:
        """超过最长持有时间的条目"""
        deadline = self._clock() - self._max_hold_time_s
        return [
            task_id
            for task_id, entry in self._entries.items()
            if entry.inserted_at <= deadline
        ]

    def over_budget_ids(self) -> list[str]:
        """为回到条目数/权重预算内需要驱逐的条目（最久未使用的在前）"""
        excess_count = len(self._entries) - self._max_size
        excess_weight = self._total_weight - self._max_weight
        victims: list[str] = []
        for task_id, entry in self._entries.items():
            if excess_count <= 0 and excess_weight <= 0:
                break
            victims.append(task_id)
            excess_count -= 1
            excess_weight -= entry.weight
        return victims

    def dirty_ids(self) -> list[str]:
        return [task_id for task_id, entry in self._entries.items() if entry.dirty]

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_weight(self) -> int:
        return self._total_weight
