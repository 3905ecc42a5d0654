"""TaskMergeEngine -- 把一批事件合并进任务缓存并输出待写入的任务文档

流程：
1. 畸形事件（缺 task_id）计数后丢弃，这是整条管道唯一的丢弃点
2. 持有 task 级锁，创建或取出缓存条目并应用事件
3. 父任务未知时登记孤儿；父任务已缓存时立即挂接
4. 认领等待当前任务的孤儿并挂接
5. 终态且有变化的任务输出一份快照
6. 按持有时间和预算驱逐条目，未写出的变化随驱逐输出
"""

from collections.abc import Awaitable, Callable

import structlog

from .cache import CacheEntry, TaskCache
from .config import PipelineConfig
from .locks import KeyedLocks
from .merging import apply_event, attach_child, merge_tasks, new_task
from .models.enums import IndexedStatus, validate_indexed_transition
from .models.event import Event
from .models.task import Task
from .orphans import OrphanCache
from .stats import PipelineStats

log = structlog.get_logger()

FlushCallback = Callable[[list[Task]], Awaitable[None]]


class TaskMergeEngine:
    """任务合并引擎

    缓存会被排空协程和合并修复任务同时修改，所有读写都经过 KeyedLocks。
    """

    def __init__(
        self,
        config: PipelineConfig,
        flush: FlushCallback,
        stats: PipelineStats | None = None,
        cache: TaskCache | None = None,
        orphans: OrphanCache | None = None,
    ) -> None:
        self._config = config
        self._flush = flush
        self._stats = stats or PipelineStats()
        self._cache = cache or TaskCache(
            max_size=config.max_cache_size,
            max_weight=config.max_cache_weight,
            max_hold_time_s=config.max_cache_hold_time_s,
        )
        self._orphans = orphans or OrphanCache(
            max_size=config.max_orphans,
            max_hold_time_s=config.max_orphan_hold_time_s,
        )
        self._locks = KeyedLocks()

    @property
    def cache(self) -> TaskCache:
        return self._cache

    @property
    def orphans(self) -> OrphanCache:
        return self._orphans

    async def process(self, events: list[Event]) -> int:
        """合并一批事件并输出需要写入的任务

        空批次同样执行驱逐检查，排空协程在队列空闲时也会调用。

        Returns:
            输出的任务文档数
        """
        touched: set[str] = set()

        for event in events:
            if event.is_malformed:
                self._stats.events_malformed += 1
                log.warning("malformed_event_discarded", event_id=event.event_id)
                continue
            try:
                touched.update(await self._merge(event))
            except Exception as e:
                # 单个事件的异常不影响同批其余事件
                self._stats.events_failed += 1
                log.error(
                    "event_merge_failed",
                    event_id=event.event_id,
                    task_id=event.task_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        snapshots = await self._collect_terminal(touched)
        snapshots.extend(await self._evict())
        self._orphans.release_stale()

        if snapshots:
            await self._flush(snapshots)
        return len(snapshots)

    async def _merge(self, event: Event) -> set[str]:
        """合并单个事件，返回有变化的 task_id"""
        event = event.truncated(
            self._config.default_max_chars,
            self._config.properties_length_map,
        )
        task_id = event.task_id or ""
        touched: set[str] = set()

        async with self._locks.hold(task_id):
            entry = self._cache.get(task_id)
            if entry is None:
                entry = self._cache.put(new_task(task_id))
            if not apply_event(entry.task, event):
                # 重复投递
                return touched
            entry.dirty = True
            self._cache.reweigh(entry)
            touched.add(task_id)

        if event.parent_id:
            touched.update(await self._link_parent(event))
        touched.update(await self._claim_orphans(task_id))
        return touched

    async def _link_parent(self, event: Event) -> set[str]:
        """挂接父任务，父任务未缓存时登记孤儿"""
        parent_id = event.parent_id or ""
        child_id = event.task_id or ""

        async with self._locks.hold_many([parent_id, child_id]):
            child = self._cache.get(child_id)
            if child is None:
                return set()
            parent = self._cache.get(parent_id)
            if parent is None:
                path = child.task.parents_path
                if path and path[-1] == parent_id:
                    # 之前已挂接，父任务只是被驱逐了
                    return set()
                child.task.orphan = True
                self._orphans.hold(parent_id, event)
                return set()
            return self._attach(parent, child)

    async def _claim_orphans(self, task_id: str) -> set[str]:
        """认领等待 task_id 的孤儿事件"""
        if not self._orphans.waiting_for(task_id):
            return set()
        changed: set[str] = set()
        for child_id, parked in self._orphans.claim(task_id).items():
            async with self._locks.hold_many([task_id, child_id]):
                parent = self._cache.get(task_id)
                if parent is None:
                    # 父任务已被驱逐，重新登记等待下一次出现
                    self._orphans.hold(task_id, parked)
                    continue
                child = self._cache.get(child_id)
                if child is None:
                    # 子任务已被驱逐：用登记的事件重建，写入时与存储中的文档合并
                    child = self._cache.put(new_task(child_id))
                    apply_event(child.task, parked)
                changed.update(self._attach(parent, child))
        if changed:
            log.debug("orphans_attached", parent_id=task_id, count=len(changed) - 1)
        return changed

    def _attach(self, parent: CacheEntry, child: CacheEntry) -> set[str]:
        if not attach_child(parent.task, child.task):
            return set()
        parent.dirty = True
        child.dirty = True
        self._cache.reweigh(parent)
        self._cache.reweigh(child)
        return {parent.task.task_id, child.task.task_id}

    async def _collect_terminal(self, task_ids: set[str]) -> list[Task]:
        """终态且有未写出变化的任务输出快照，条目继续留在缓存"""
        snapshots: list[Task] = []
        for task_id in sorted(task_ids):
            async with self._locks.hold(task_id):
                entry = self._cache.get(task_id)
                if entry is None or not entry.dirty or not entry.task.is_terminal:
                    continue
                snapshots.append(entry.task.model_copy(deep=True))
                entry.dirty = False
        return snapshots

    async def _evict(self) -> list[Task]:
        """按持有时间和预算驱逐条目"""
        victims = self._cache.expired_ids()
        for task_id in self._cache.over_budget_ids():
            if task_id not in victims:
                victims.append(task_id)

        snapshots: list[Task] = []
        partial = 0
        for task_id in victims:
            async with self._locks.hold(task_id):
                entry = self._cache.pop(task_id)
                if entry is None or not entry.dirty:
                    continue
                if not entry.task.is_complete:
                    partial += 1
                snapshots.append(entry.task.model_copy(deep=True))
        if victims:
            log.info(
                "tasks_evicted",
                evicted=len(victims),
                flushed=len(snapshots),
                partial=partial,
                cache_size=len(self._cache),
            )
        return snapshots

    async def flush_all(self) -> int:
        """输出所有未写出的变化（关闭时调用），条目保留在缓存"""
        snapshots: list[Task] = []
        for task_id in self._cache.dirty_ids():
            async with self._locks.hold(task_id):
                entry = self._cache.get(task_id)
                if entry is None or not entry.dirty:
                    continue
                snapshots.append(entry.task.model_copy(deep=True))
                entry.dirty = False
        if snapshots:
            await self._flush(snapshots)
        return len(snapshots)

    async def mark_indexed(self, task_id: str, status: IndexedStatus) -> None:
        """写入成功回调：更新缓存中任务的索引侧状态（只前进）"""
        async with self._locks.hold(task_id):
            entry = self._cache.get(task_id)
            if entry is None:
                return
            if validate_indexed_transition(entry.task.indexed_status, status):
                entry.task.indexed_status = status

    async def absorb_stored(self, stored: Task) -> Task | None:
        """合并修复入口：把存储中的文档并入缓存中的任务

        Returns:
            合并后的快照；任务不在缓存中时返回 None
        """
        async with self._locks.hold(stored.task_id):
            entry = self._cache.get(stored.task_id)
            if entry is None:
                return None
            entry.task = merge_tasks(stored, entry.task)
            entry.dirty = True
            self._cache.reweigh(entry)
            return entry.task.model_copy(deep=True)
