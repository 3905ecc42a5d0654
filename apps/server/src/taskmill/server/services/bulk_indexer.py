"""BulkIndexer -- 把任务文档批量写入索引存储

写入流程：
1. 按 task_id 的稳定哈希路由到固定的写入协程（同一任务的写入串行）
2. 按字节预算攒批
3. 读-合并-写：先取出目标索引中的已有文档并合并，保证后写入的片段不会覆盖更完整的文档
4. 整批失败按 num_of_merged_tasks_tries 重试，耗尽后整批溢出
5. 单文档失败按 num_of_tasks_index_tries 重试，耗尽后作为一个 bulk 溢出
"""

import asyncio
import json
import zlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from pydantic import ValidationError
from taskmill.core.locks import KeyedLocks
from taskmill.core.merging import merge_tasks
from taskmill.core.models import IndexedStatus, SpillKind, Task
from taskmill.core.stats import PipelineStats
from taskmill.indexer import (
    BulkAction,
    IndexerConfig,
    IndexStore,
    IndexStoreError,
    StoredDocument,
)

from .spiller import SpillWriter, new_record

log = structlog.get_logger()

IndexedCallback = Callable[[str, IndexedStatus], Awaitable[None]]

# 写入协程等待首个文档的超时（秒）
WORKER_POLL_S = 0.5


@dataclass
class IndexOutcome:
    """一次 index_tasks 的结果"""

    indexed: list[str] = field(default_factory=list)
    spilled: list[str] = field(default_factory=list)
    lost: list[str] = field(default_factory=list)


def index_name(prefix: str, now: datetime | None = None) -> str:
    """按 UTC 日期生成写入索引名：{prefix}-YYYY.MM.DD"""
    now = now or datetime.now(UTC)
    return f"{prefix}-{now.astimezone(UTC):%Y.%m.%d}"


def document_size(task: Task) -> int:
    """文档序列化后的字节数"""
    return len(json.dumps(task.to_document()).encode())


def _dedupe(tasks: list[Task]) -> dict[str, Task]:
    """同一批次中同一任务的多份快照按先后合并成一份"""
    merged: dict[str, Task] = {}
    for task in tasks:
        prev = merged.get(task.task_id)
        merged[task.task_id] = task if prev is None else merge_tasks(prev, task)
    return merged


class BulkIndexer:
    """任务文档写入器"""

    def __init__(
        self,
        index_store: IndexStore,
        spill_writer: SpillWriter,
        config: IndexerConfig,
        stats: PipelineStats | None = None,
        on_indexed: IndexedCallback | None = None,
    ) -> None:
        self._store = index_store
        self._spill_writer = spill_writer
        self._config = config
        self._stats = stats or PipelineStats()
        self._on_indexed = on_indexed
        self._locks = KeyedLocks()
        self._known_indices: set[str] = set()
        self._queues: list[asyncio.Queue[Task]] = [
            asyncio.Queue() for _ in range(config.indexing_workers)
        ]

    def set_on_indexed(self, callback: IndexedCallback) -> None:
        self._on_indexed = callback

    def current_index(self) -> str:
        return index_name(self._config.index_prefix)

    @property
    def pending(self) -> int:
        """写入队列中尚未处理的文档数"""
        return sum(q.qsize() for q in self._queues)

    def worker_for(self, task_id: str) -> int:
        """task_id -> 写入协程编号（稳定哈希）"""
        return zlib.crc32(task_id.encode()) % len(self._queues)

    async def submit(self, tasks: list[Task]) -> None:
        """把任务文档分发到各写入协程的队列"""
        for task in tasks:
            self._queues[self.worker_for(task.task_id)].put_nowait(task)

    async def _next_batch(self, queue: asyncio.Queue[Task], timeout: float) -> list[Task]:
        """等待首个文档，然后攒到字节预算为止"""
        try:
            first = await asyncio.wait_for(queue.get(), timeout=timeout)
        except TimeoutError:
            return []
        batch = [first]
        size = document_size(first)
        while size < self._config.index_bulk_size_bytes:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            batch.append(task)
            size += document_size(task)
        return batch

    async def run_worker(self, worker_id: int, stop_event: asyncio.Event) -> None:
        """写入协程：stop_event 置位且队列为空后退出"""
        queue = self._queues[worker_id]
        while not (stop_event.is_set() and queue.empty()):
            batch = await self._next_batch(queue, WORKER_POLL_S)
            if not batch:
                continue
            try:
                await self.index_tasks(batch)
            except Exception as e:
                log.error(
                    "index_worker_batch_failed",
                    worker_id=worker_id,
                    docs=len(batch),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._spill(list(_dedupe(batch).values()), reason="worker_error")
        log.debug("index_worker_stopped", worker_id=worker_id)

    async def _ensure_index(self, index: str) -> None:
        if index in self._known_indices:
            return
        await self._store.create_index(index)
        self._known_indices.add(index)

    async def _read_merge(self, index: str, pending: dict[str, Task]) -> dict[str, Task]:
        """取出目标索引中的已有文档，与待写入文档合并"""
        stored_docs = await self._store.get_documents(index, list(pending))
        merged = dict(pending)
        for doc in stored_docs:
            task = merged.get(doc.doc_id)
            if task is None:
                continue
            stored = self._decode(doc)
            if stored is not None:
                merged[doc.doc_id] = merge_tasks(stored, task)
        return merged

    @staticmethod
    def _decode(doc: StoredDocument) -> Task | None:
        try:
            return Task.from_document(doc.source)
        except ValidationError as e:
            log.warning(
                "stored_document_invalid",
                index=doc.index,
                doc_id=doc.doc_id,
                error=str(e),
            )
            return None

    async def index_tasks(self, tasks: list[Task], index: str | None = None) -> IndexOutcome:
        """写入一批任务文档（读-合并-写 + 重试 + 溢出）

        Args:
            tasks: 待写入的任务
            index: 目标索引，默认当天的写入索引

        Returns:
            IndexOutcome：成功写入、已溢出、丢失（溢出也失败）的 task_id
        """
        target = index or self.current_index()
        pending = _dedupe(tasks)
        outcome = IndexOutcome()
        if not pending:
            return outcome

        async with self._locks.hold_many(pending):
            for attempt in range(1, self._config.num_of_merged_tasks_tries + 1):
                try:
                    await self._ensure_index(target)
                    merged = await self._read_merge(target, pending)
                    failed = await self._write(target, merged, outcome)
                    break
                except IndexStoreError as e:
                    log.warning(
                        "bulk_index_failed",
                        index=target,
                        docs=len(pending),
                        attempt=attempt,
                        max_tries=self._config.num_of_merged_tasks_tries,
                        error=str(e),
                    )
                    if attempt < self._config.num_of_merged_tasks_tries:
                        await asyncio.sleep(self._config.retry_wait_s)
            else:
                await self._spill(list(pending.values()), reason="bulk_failed", outcome=outcome)
                return outcome

            # 逐文档重试（第一次尝试已在上面完成）
            for attempt in range(2, self._config.num_of_tasks_index_tries + 1):
                if not failed:
                    break
                log.info("docs_index_retry", index=target, docs=len(failed), attempt=attempt)
                try:
                    failed = await self._write(target, failed, outcome)
                except IndexStoreError as e:
                    log.warning("docs_index_retry_failed", index=target, error=str(e))

            if failed:
                self._stats.docs_failed += len(failed)
                await self._spill(list(failed.values()), reason="docs_failed", outcome=outcome)

        return outcome

    async def _write(
        self,
        index: str,
        tasks: dict[str, Task],
        outcome: IndexOutcome,
    ) -> dict[str, Task]:
        """提交一个 bulk，返回失败的文档"""
        docs = {task_id: task.to_document() for task_id, task in tasks.items()}
        actions = [
            BulkAction(op="index", index=index, doc_id=task_id, body=body)
            for task_id, body in docs.items()
        ]
        results = await self._store.bulk(actions)

        failed: dict[str, Task] = {}
        for result in results:
            if not result.ok:
                log.debug(
                    "doc_index_rejected",
                    index=index,
                    doc_id=result.doc_id,
                    status=result.status,
                    error=result.error,
                )
                failed[result.doc_id] = tasks[result.doc_id]
                continue
            outcome.indexed.append(result.doc_id)
            self._stats.docs_indexed += 1
            if self._on_indexed is not None:
                status = IndexedStatus(docs[result.doc_id]["indexed_status"])
                await self._on_indexed(result.doc_id, status)
        return failed

    async def _spill(
        self,
        tasks: list[Task],
        reason: str,
        outcome: IndexOutcome | None = None,
    ) -> None:
        """把文档作为一个 bulk 写入溢出存储"""
        task_ids = [t.task_id for t in tasks]
        payload = json.dumps([t.to_document() for t in tasks])
        if await self._spill_writer.write([new_record(SpillKind.BULK, payload)]):
            self._stats.bulks_spilled += 1
            log.warning("bulk_spilled", reason=reason, docs=len(tasks))
            if outcome is not None:
                outcome.spilled.extend(task_ids)
            return
        log.error("bulk_lost", reason=reason, docs=len(tasks), task_ids=task_ids[:10])
        if outcome is not None:
            outcome.lost.extend(task_ids)

    async def delete_documents(self, docs: list[StoredDocument]) -> int:
        """删除文档副本（合并修复清理旧索引），返回成功删除数"""
        if not docs:
            return 0
        actions = [BulkAction(op="delete", index=d.index, doc_id=d.doc_id) for d in docs]
        results = await self._store.bulk(actions)
        deleted = 0
        for result in results:
            if result.ok:
                deleted += 1
            else:
                log.warning(
                    "stale_copy_delete_failed",
                    index=result.index,
                    doc_id=result.doc_id,
                    error=result.error,
                )
        return deleted

    def forget_index(self, name: str) -> None:
        """索引被删除后调用，下次写入时重新创建"""
        self._known_indices.discard(name)
