"""Spiller -- 把溢出队列中的事件写入持久化溢出存储

SpillWriter 负责带退避重试的写入，Spiller 协程和 BulkIndexer 都经过它。
"""

import asyncio
import time

import aiosqlite
import structlog
from taskmill.core.models import Event, SpilledRecord, SpillKind
from taskmill.core.queue import IngestionQueue
from taskmill.core.stats import PipelineStats
from taskmill.core.store import OverflowStore
from ulid import ULID

log = structlog.get_logger()

# 单次从溢出队列取出的最大事件数
SPILL_BATCH_SIZE = 500
# 等待溢出队列首个事件的超时（秒）
SPILL_POLL_S = 0.5


def new_record(kind: SpillKind, payload: str) -> SpilledRecord:
    """构造一条溢出记录，键为时间有序的 ULID"""
    return SpilledRecord(
        key=str(ULID()),
        kind=kind,
        payload=payload,
        inserted_at=time.time(),
    )


class SpillWriter:
    """带指数退避重试的溢出写入"""

    def __init__(
        self,
        overflow_store: OverflowStore,
        max_tries: int,
        backoff_s: float,
    ) -> None:
        self._store = overflow_store
        self._max_tries = max_tries
        self._backoff_s = backoff_s

    async def write(self, records: list[SpilledRecord]) -> bool:
        """单事务写入一批记录

        Returns:
            True 写入成功；重试耗尽返回 False（由调用方记录丢失）
        """
        if not records:
            return True
        for attempt in range(1, self._max_tries + 1):
            try:
                await self._store.put_many(records)
                return True
            except (aiosqlite.Error, OSError) as e:
                log.warning(
                    "spill_write_failed",
                    attempt=attempt,
                    max_tries=self._max_tries,
                    records=len(records),
                    error=str(e),
                )
                if attempt < self._max_tries:
                    await asyncio.sleep(self._backoff_s * 2 ** (attempt - 1))
        return False


class Spiller:
    """溢出协程：排空溢出队列并落盘"""

    def __init__(
        self,
        queue: IngestionQueue,
        writer: SpillWriter,
        stats: PipelineStats,
    ) -> None:
        self._queue = queue
        self._writer = writer
        self._stats = stats

    async def spill(self, events: list[Event]) -> None:
        """写入一批事件，失败时计数并记录丢失"""
        records = [new_record(SpillKind.EVENT, e.model_dump_json()) for e in events]
        if await self._writer.write(records):
            self._stats.events_spilled += len(events)
            log.debug("events_spilled", count=len(events))
            return
        self._stats.events_dropped += len(events)
        log.error(
            "events_dropped_spill_failed",
            count=len(events),
            event_ids=[e.event_id for e in events[:10]],
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """循环直到 stop_event 置位，退出前清空溢出队列"""
        while not stop_event.is_set():
            try:
                events = await self._queue.drain_overflow(SPILL_BATCH_SIZE, SPILL_POLL_S)
                if events:
                    await self.spill(events)
            except Exception as e:
                log.error("spiller_iteration_failed", error=str(e), error_type=type(e).__name__)

        while self._queue.overflow_depth:
            events = await self._queue.drain_overflow(SPILL_BATCH_SIZE, 0.01)
            if not events:
                break
            await self.spill(events)
        log.info("spiller_stopped", events_spilled=self._stats.events_spilled)
