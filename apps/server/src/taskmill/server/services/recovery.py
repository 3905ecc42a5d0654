"""RecoveryScheduler -- 从溢出存储恢复 bulk 和事件

- bulk：存活超过 min_lifetime_s 的记录交给 BulkIndexer 写入当天索引，写入或再次溢出后删除
- 事件：注入摄入队列，队列满即停止，只删除已注入的记录
- 无法解码的记录记录日志、计数并删除
- 超过 persistence_ttl_s 仍未消费的记录在每轮开始时清理

部分消费后重复取出是安全的：合并是幂等的。
"""

import json

import structlog
from pydantic import ValidationError
from taskmill.core.config import PipelineConfig
from taskmill.core.models import Event, SpilledRecord, SpillKind, Task
from taskmill.core.queue import IngestionQueue
from taskmill.core.stats import PipelineStats
from taskmill.core.store import OverflowStore

from .bulk_indexer import BulkIndexer

log = structlog.get_logger()


def _decode_bulk(payload: str) -> list[Task]:
    """bulk 记录 -> 任务列表（JSON 数组，元素为任务文档）"""
    docs = json.loads(payload)
    if not isinstance(docs, list) or not all(isinstance(doc, dict) for doc in docs):
        raise ValueError("bulk 记录必须是任务文档数组")
    return [Task.from_document(doc) for doc in docs]


class RecoveryScheduler:
    """溢出记录恢复"""

    def __init__(
        self,
        overflow_store: OverflowStore,
        queue: IngestionQueue,
        bulk_indexer: BulkIndexer,
        config: PipelineConfig,
        stats: PipelineStats,
    ) -> None:
        self._store = overflow_store
        self._queue = queue
        self._indexer = bulk_indexer
        self._config = config
        self._stats = stats

    def _corrupted(self, record: SpilledRecord, error: Exception) -> None:
        self._stats.records_corrupted += 1
        log.error(
            "spilled_record_corrupted",
            key=record.key,
            kind=record.kind,
            error=str(error),
        )

    async def _expire(self, kind: SpillKind) -> None:
        """清理超过 TTL 仍未消费的记录"""
        expired = await self._store.remove_expired(self._config.persistence_ttl_s, kind)
        if expired:
            self._stats.records_expired += expired
            log.warning(
                "spilled_records_expired",
                kind=kind,
                expired=expired,
                ttl_s=self._config.persistence_ttl_s,
            )

    async def recover_bulks(self) -> int:
        """恢复一轮 bulk 记录

        Returns:
            已消费（写入或再次溢出）的记录数
        """
        await self._expire(SpillKind.BULK)
        records = await self._store.fetch_older_than(
            SpillKind.BULK,
            self._config.min_lifetime_s,
            self._config.max_fetched_bulks,
        )
        consumed = 0
        for record in records:
            try:
                tasks = _decode_bulk(record.payload)
            except (ValueError, TypeError, ValidationError) as e:
                self._corrupted(record, e)
                await self._store.remove([record.key])
                continue

            outcome = await self._indexer.index_tasks(tasks)
            if outcome.lost:
                # 再次溢出也失败，保留记录下轮重试
                log.warning("bulk_recovery_incomplete", key=record.key, lost=len(outcome.lost))
                continue
            await self._store.remove([record.key])
            consumed += 1
            self._stats.bulks_recovered += 1

        if records:
            log.info("bulks_recovered", fetched=len(records), consumed=consumed)
        return consumed

    async def recover_events(self) -> int:
        """恢复一轮事件记录

        Returns:
            注入摄入队列的事件数
        """
        await self._expire(SpillKind.EVENT)
        records = await self._store.fetch_older_than(
            SpillKind.EVENT,
            self._config.min_lifetime_s,
            self._config.max_fetched_events,
        )
        done: list[str] = []
        injected = 0
        for record in records:
            try:
                event = Event.model_validate_json(record.payload)
            except ValidationError as e:
                self._corrupted(record, e)
                done.append(record.key)
                continue
            if not self._queue.inject(event):
                log.info(
                    "event_recovery_paused_queue_full",
                    remaining=len(records) - len(done),
                )
                break
            done.append(record.key)
            injected += 1

        await self._store.remove(done)
        self._stats.events_recovered += injected
        if records:
            log.info("events_recovered", fetched=len(records), injected=injected)
        return injected
