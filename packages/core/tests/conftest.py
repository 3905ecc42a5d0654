"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from taskmill.core.config import PipelineConfig
from taskmill.core.models import Task


@pytest_asyncio.fixture
async def core_db(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """核心层已初始化数据库连接"""
    from taskmill.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "core_test.db"))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def small_config(tmp_path: Path) -> PipelineConfig:
    """小容量配置，便于触发驱逐"""
    return PipelineConfig(
        max_cache_size=100,
        max_cache_hold_time_s=60,
        max_orphan_hold_time_s=60,
        overflow_db_path=str(tmp_path / "overflow.db"),
    )


class FlushRecorder:
    """记录合并引擎输出的任务快照"""

    def __init__(self) -> None:
        self.batches: list[list[Task]] = []

    async def __call__(self, tasks: list[Task]) -> None:
        self.batches.append(tasks)

    @property
    def tasks(self) -> list[Task]:
        return [t for batch in self.batches for t in batch]

    def last(self, task_id: str) -> Task:
        return [t for t in self.tasks if t.task_id == task_id][-1]


@pytest.fixture
def flushed() -> FlushRecorder:
    return FlushRecorder()
