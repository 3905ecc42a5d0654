"""IngestionQueue -- 有界内存摄入队列 + 溢出队列

offer() 永不阻塞：事件队列满时转入溢出队列，由 Spiller 写入持久化存储；
两个队列都满时才丢弃（记录 error 日志并计数，这是最后手段）。
"""

import asyncio
from enum import StrEnum

import structlog

from .models.event import Event
from .stats import PipelineStats

log = structlog.get_logger()


class QueueOutcome(StrEnum):
    """offer() 的结果"""

    QUEUED = "queued"
    OVERFLOWED = "overflowed"
    DROPPED = "dropped"


async def _drain(
    queue: asyncio.Queue,
    max_items: int,
    timeout: float,
) -> list:
    """等待首个元素最多 timeout 秒，之后不等待地取出至多 max_items 个"""
    try:
        first = await asyncio.wait_for(queue.get(), timeout=timeout)
    except TimeoutError:
        return []
    items = [first]
    while len(items) < max_items:
        try:
            items.append(queue.get_nowait())
        except asyncio.QueueEmpty:
            break
    return items


class IngestionQueue:
    """摄入队列 -- 基于两个有界 asyncio.Queue"""

    def __init__(
        self,
        events_capacity: int,
        overflow_capacity: int,
        stats: PipelineStats | None = None,
    ) -> None:
        self._events: asyncio.Queue[Event] = asyncio.Queue(maxsize=events_capacity)
        self._overflow: asyncio.Queue[Event] = asyncio.Queue(maxsize=overflow_capacity)
        self._stats = stats or PipelineStats()

    def offer(self, event: Event) -> QueueOutcome:
        """生产者入口：放入事件队列，满则转入溢出队列

        Returns:
            QueueOutcome，DROPPED 仅在两个队列都满时出现
        """
        self._stats.events_received += 1
        try:
            self._events.put_nowait(event)
            self._stats.events_queued += 1
            return QueueOutcome.QUEUED
        except asyncio.QueueFull:
            pass

        try:
            self._overflow.put_nowait(event)
            self._stats.events_overflowed += 1
            return QueueOutcome.OVERFLOWED
        except asyncio.QueueFull:
            self._stats.events_dropped += 1
            log.error(
                "event_dropped_queues_full",
                event_id=event.event_id,
                task_id=event.task_id,
                events_depth=self._events.qsize(),
                overflow_depth=self._overflow.qsize(),
            )
            return QueueOutcome.DROPPED

    def inject(self, event: Event) -> bool:
        """恢复路径入口：只放入事件队列，满则返回 False（不转溢出）"""
        try:
            self._events.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    async def drain(self, max_items: int, timeout: float) -> list[Event]:
        """取出一批待合并事件"""
        return await _drain(self._events, max_items, timeout)

    async def drain_overflow(self, max_items: int, timeout: float) -> list[Event]:
        """取出一批待溢出事件"""
        return await _drain(self._overflow, max_items, timeout)

    @property
    def events_depth(self) -> int:
        return self._events.qsize()

    @property
    def overflow_depth(self) -> int:
        return self._overflow.qsize()

    @property
    def buffered(self) -> int:
        """内存中尚未处理的事件总数"""
        return self._events.qsize() + self._overflow.qsize()
