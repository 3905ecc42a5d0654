"""Pipeline -- 摄入管道监督者

组合 IngestionQueue、TaskMergeEngine、Spiller、BulkIndexer、RecoveryScheduler
和生命周期任务，每个工作单元是一个 asyncio.Task。

关闭顺序：
1. 周期任务（恢复、合并修复、索引删除）退出
2. 摄入协程：排空协程做最后一次排空并 flush_all，Spiller 清空溢出队列
3. 写入协程清空各自队列
4. 关闭溢出存储与索引存储

超时后取消剩余协程，并记录仍在内存中的事件数（有界的丢失窗口）。
"""

import asyncio

import structlog
from taskmill.core.config import PipelineConfig
from taskmill.core.engine import TaskMergeEngine
from taskmill.core.models import Event
from taskmill.core.queue import IngestionQueue, QueueOutcome
from taskmill.core.stats import PipelineStats
from taskmill.core.store import OverflowStore, create_overflow_store
from taskmill.indexer import IndexerConfig, IndexStore, create_index_store

from .bulk_indexer import BulkIndexer
from .lifecycle import IndexDeletionJob, MergeRepairJob
from .recovery import RecoveryScheduler
from .scheduler import run_periodic
from .spiller import Spiller, SpillWriter

log = structlog.get_logger()


class Pipeline:
    """摄入管道

    服务进程与嵌入方使用同一个对象，溢出落盘的保证相同。
    """

    def __init__(
        self,
        config: PipelineConfig,
        indexer_config: IndexerConfig,
        overflow_store: OverflowStore,
        index_store: IndexStore,
        stats: PipelineStats | None = None,
    ) -> None:
        self.config = config
        self.indexer_config = indexer_config
        self.overflow_store = overflow_store
        self.index_store = index_store
        self.stats = stats or PipelineStats()

        self.queue = IngestionQueue(
            events_capacity=config.events_queue_capacity,
            overflow_capacity=config.overflow_queue_capacity,
            stats=self.stats,
        )
        spill_writer = SpillWriter(
            overflow_store,
            max_tries=config.spill_max_tries,
            backoff_s=config.retry_backoff_s,
        )
        self.bulk_indexer = BulkIndexer(index_store, spill_writer, indexer_config, self.stats)
        self.engine = TaskMergeEngine(config, flush=self.bulk_indexer.submit, stats=self.stats)
        self.bulk_indexer.set_on_indexed(self.engine.mark_indexed)

        self.spiller = Spiller(self.queue, spill_writer, self.stats)
        self.recovery = RecoveryScheduler(
            overflow_store, self.queue, self.bulk_indexer, config, self.stats
        )
        self.merge_repair = MergeRepairJob(
            index_store, self.bulk_indexer, self.engine, indexer_config, self.stats
        )
        self.index_deletion = IndexDeletionJob(
            index_store,
            indexer_config,
            self.stats,
            on_deleted=self.bulk_indexer.forget_index,
        )

        self._jobs_stop = asyncio.Event()
        self._intake_stop = asyncio.Event()
        self._writers_stop = asyncio.Event()
        self._job_tasks: list[asyncio.Task] = []
        self._intake_tasks: list[asyncio.Task] = []
        self._writer_tasks: list[asyncio.Task] = []
        self._started = False
        self._closed = False

    @classmethod
    async def open(
        cls,
        config: PipelineConfig,
        indexer_config: IndexerConfig,
    ) -> "Pipeline":
        """按配置创建溢出存储和索引存储，并启动管道（嵌入入口）"""
        overflow_store = await create_overflow_store(config.overflow_db_path)
        index_store = create_index_store(indexer_config)
        pipeline = cls(config, indexer_config, overflow_store, index_store)
        pipeline.start()
        return pipeline

    @property
    def running(self) -> bool:
        return self._started and not self._closed

    def send(self, event: Event) -> QueueOutcome:
        """生产者入口（不阻塞）"""
        if self._closed:
            self.stats.events_dropped += 1
            log.warning("event_rejected_pipeline_closed", event_id=event.event_id)
            return QueueOutcome.DROPPED
        return self.queue.offer(event)

    def start(self) -> None:
        """启动所有工作协程"""
        if self._started:
            return
        self._started = True
        cfg = self.config

        periodic = (
            ("bulk_recovery", cfg.bulk_fetch_period_s, self.recovery.recover_bulks),
            ("event_recovery", cfg.events_fetch_period_s, self.recovery.recover_events),
            ("merge_repair", cfg.merging_period_s, self.merge_repair.run_once),
            ("index_deletion", cfg.deletion_period_s, self.index_deletion.run_once),
        )
        self._job_tasks = [
            asyncio.create_task(run_periodic(name, period, job, self._jobs_stop), name=name)
            for name, period, job in periodic
        ]
        self._intake_tasks = [
            asyncio.create_task(self._drain_loop(), name="drainer"),
            asyncio.create_task(self.spiller.run(self._intake_stop), name="spiller"),
        ]
        self._writer_tasks = [
            asyncio.create_task(
                self.bulk_indexer.run_worker(i, self._writers_stop),
                name=f"index_writer_{i}",
            )
            for i in range(self.indexer_config.indexing_workers)
        ]
        log.info(
            "pipeline_started",
            indexing_workers=self.indexer_config.indexing_workers,
            index_mode=self.indexer_config.index_mode,
        )

    async def _drain_loop(self) -> None:
        """排空协程：取出事件交给合并引擎，空批次也触发驱逐检查"""
        while not self._intake_stop.is_set():
            try:
                events = await self.queue.drain(
                    self.config.max_items_per_cycle,
                    self.config.drain_timeout_s,
                )
                await self.engine.process(events)
            except Exception as e:
                log.error("drain_iteration_failed", error=str(e), error_type=type(e).__name__)

        while self.queue.events_depth:
            events = await self.queue.drain(self.config.max_items_per_cycle, 0.01)
            if not events:
                break
            await self.engine.process(events)
        flushed = await self.engine.flush_all()
        log.info("drainer_stopped", flushed=flushed)

    def in_buffer(self) -> int:
        """内存中尚未写出的事件与文档数"""
        return (
            self.queue.buffered
            + self.bulk_indexer.pending
            + len(self.engine.cache.dirty_ids())
        )

    async def shutdown(self, timeout: float | None = None) -> bool:
        """优雅关闭

        Args:
            timeout: 总超时（秒），默认 termination_timeout_s

        Returns:
            True 如果所有工作协程在超时内完成
        """
        if self._closed:
            return True
        self._closed = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout or self.config.termination_timeout_s)
        log.info("pipeline_shutdown_started", events_in_buffer=self.in_buffer())

        completed = True
        for stop, tasks in (
            (self._jobs_stop, self._job_tasks),
            (self._intake_stop, self._intake_tasks),
            (self._writers_stop, self._writer_tasks),
        ):
            stop.set()
            if not tasks:
                continue
            remaining = max(deadline - loop.time(), 0)
            done, pending = await asyncio.wait(tasks, timeout=remaining)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    log.error("worker_failed", worker=task.get_name(), error=str(task.exception()))
            if pending:
                completed = False
                break

        if not completed:
            log.warning(
                "pipeline_shutdown_timeout",
                events_in_buffer=self.in_buffer(),
                timeout_s=timeout or self.config.termination_timeout_s,
            )
            for stop in (self._jobs_stop, self._intake_stop, self._writers_stop):
                stop.set()
            all_tasks = (*self._job_tasks, *self._intake_tasks, *self._writer_tasks)
            leftovers = [t for t in all_tasks if not t.done()]
            for task in leftovers:
                task.cancel()
            await asyncio.gather(*leftovers, return_exceptions=True)

        await self.index_store.close()
        await self.overflow_store.close()
        log.info("pipeline_stopped", completed=completed, **self.stats.snapshot())
        return completed

    def snapshot(self) -> dict:
        """计数器与当前深度，/api/stats 使用"""
        return {
            "counters": self.stats.snapshot(),
            "events_queue_depth": self.queue.events_depth,
            "overflow_queue_depth": self.queue.overflow_depth,
            "cache_size": len(self.engine.cache),
            "cache_weight": self.engine.cache.total_weight,
            "orphans": len(self.engine.orphans),
            "pending_writes": self.bulk_indexer.pending,
        }
