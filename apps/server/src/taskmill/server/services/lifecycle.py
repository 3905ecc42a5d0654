"""索引生命周期 -- 合并修复与过期索引删除

MergeRepairJob: 终态事件到达前就被写入的文档（PARTIALLY_INDEXED）可能在多个
按天索引中各有一份，周期性地把它们合并成一份写入最新的索引，并删除旧副本。

IndexDeletionJob: 删除超过保留天数、存储大小或文档数阈值的索引。
"""

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from datetime import UTC, datetime

import structlog
from pydantic import ValidationError
from taskmill.core.engine import TaskMergeEngine
from taskmill.core.merging import merge_tasks
from taskmill.core.models import IndexedStatus, Task
from taskmill.core.stats import PipelineStats
from taskmill.indexer import (
    IndexerConfig,
    IndexInfo,
    IndexStore,
    IndexStoreError,
    StoredDocument,
)

from .bulk_indexer import BulkIndexer

log = structlog.get_logger()

_GB = 1024**3
# 合并修复扫描的单页文档数上限
_LOOKUP_CHUNK = 500


class MergeRepairJob:
    """合并修复任务"""

    def __init__(
        self,
        index_store: IndexStore,
        bulk_indexer: BulkIndexer,
        engine: TaskMergeEngine,
        config: IndexerConfig,
        stats: PipelineStats,
    ) -> None:
        self._store = index_store
        self._indexer = bulk_indexer
        self._engine = engine
        self._config = config
        self._stats = stats

    async def _candidates(self) -> dict[str, list[StoredDocument]]:
        """收集至多 scroll_limitation 个可修复任务及其全部副本

        可修复：有多份副本，或任务仍在缓存中。单独的部分文档（长时间运行或
        永不结束的任务）不计入上限，扫描越过它们继续向后。
        """
        limit = self._config.scroll_limitation
        seen: set[str] = set()
        candidates: dict[str, list[StoredDocument]] = {}
        pages = self._store.scan(
            self._config.index_pattern,
            {"indexed_status": IndexedStatus.PARTIALLY_INDEXED.value},
            page_size=min(limit, _LOOKUP_CHUNK),
        )
        async with aclosing(pages):
            async for page in pages:
                fresh = [tid for tid in dict.fromkeys(d.doc_id for d in page) if tid not in seen]
                seen.update(fresh)
                for task_id, docs in (await self._copies(fresh)).items():
                    if len(docs) > 1 or task_id in self._engine.cache:
                        candidates[task_id] = docs
                        if len(candidates) >= limit:
                            return candidates
        return candidates

    async def _copies(self, task_ids: list[str]) -> dict[str, list[StoredDocument]]:
        """查询所有任务索引中的副本，按 task_id 分组、按索引名排序"""
        groups: dict[str, list[StoredDocument]] = {}
        if not task_ids:
            return groups
        for doc in await self._store.get_documents(self._config.index_pattern, task_ids):
            groups.setdefault(doc.doc_id, []).append(doc)
        for docs in groups.values():
            docs.sort(key=lambda d: d.index)
        return groups

    async def run_once(self) -> int:
        """执行一轮合并修复

        Returns:
            修复的任务数
        """
        candidates = await self._candidates()
        if not candidates:
            return 0

        repaired = 0
        for task_id, docs in candidates.items():
            try:
                if await self._repair(task_id, docs):
                    repaired += 1
            except (IndexStoreError, ValidationError) as e:
                log.warning("merge_repair_failed", task_id=task_id, error=str(e))

        self._stats.tasks_repaired += repaired
        log.info("merge_repair_completed", candidates=len(candidates), repaired=repaired)
        return repaired

    async def _repair(self, task_id: str, docs: list[StoredDocument]) -> bool:
        merged = Task.from_document(docs[0].source)
        for doc in docs[1:]:
            merged = merge_tasks(merged, Task.from_document(doc.source))

        snapshot = await self._engine.absorb_stored(merged)
        if snapshot is not None:
            merged = snapshot

        newest = docs[-1].index
        outcome = await self._indexer.index_tasks([merged], index=newest)
        if task_id not in outcome.indexed:
            # 写入失败（已溢出），旧副本保留到下一轮
            return False

        stale = [d for d in docs if d.index != newest]
        await self._indexer.delete_documents(stale)
        log.debug(
            "task_repaired",
            task_id=task_id,
            index=newest,
            copies=len(docs),
            indexed_status=merged.document_status(),
        )
        return True


class IndexDeletionJob:
    """过期索引删除任务"""

    def __init__(
        self,
        index_store: IndexStore,
        config: IndexerConfig,
        stats: PipelineStats,
        on_deleted: Callable[[str], None] | None = None,
    ) -> None:
        self._store = index_store
        self._config = config
        self._stats = stats
        self._on_deleted = on_deleted

    def expiry_reason(self, info: IndexInfo, now: datetime) -> str | None:
        """返回索引应被删除的原因，未超过任何阈值时返回 None"""
        age_days = (now - info.created_at).total_seconds() / 86_400
        if age_days > self._config.max_index_age_days:
            return "age"
        if info.size_bytes > self._config.max_index_size_gb * _GB:
            return "size"
        if info.doc_count > self._config.max_index_docs:
            return "docs"
        return None

    async def run_once(self, now: datetime | None = None) -> int:
        """执行一轮删除

        Returns:
            删除成功的索引数
        """
        now = now or datetime.now(UTC)
        indices = await self._store.list_indices(self._config.index_pattern)
        expired = [
            (info, reason)
            for info in indices
            if (reason := self.expiry_reason(info, now)) is not None
        ]
        if not expired:
            return 0

        semaphore = asyncio.Semaphore(self._config.expired_max_indices_to_delete_in_parallel)

        async def delete(info: IndexInfo, reason: str) -> bool:
            async with semaphore:
                try:
                    await self._store.delete_index(info.name)
                except IndexStoreError as e:
                    log.warning("index_delete_failed", index=info.name, error=str(e))
                    return False
            if self._on_deleted is not None:
                self._on_deleted(info.name)
            log.info(
                "index_deleted",
                index=info.name,
                reason=reason,
                size_bytes=info.size_bytes,
                doc_count=info.doc_count,
            )
            return True

        results = await asyncio.gather(*(delete(info, reason) for info, reason in expired))
        deleted = sum(results)
        self._stats.indices_deleted += deleted
        return deleted
