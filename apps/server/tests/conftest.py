"""apps/server 测试配置 -- 内存索引存储、临时溢出存储、小容量配置"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskmill.core.config import PipelineConfig
from taskmill.core.stats import PipelineStats
from taskmill.indexer import IndexerConfig, MemoryIndexStore


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(
        events_queue_capacity=100,
        overflow_queue_capacity=100,
        drain_timeout_s=0.05,
        overflow_db_path=str(tmp_path / "sqlite" / "overflow.db"),
        min_lifetime_s=0,
        spill_max_tries=2,
        retry_backoff_s=0,
        termination_timeout_s=5,
    )


@pytest.fixture
def indexer_config() -> IndexerConfig:
    return IndexerConfig(
        index_mode="memory",
        index_prefix="tm",
        retry_wait_s=0,
        num_of_merged_tasks_tries=3,
        num_of_tasks_index_tries=3,
    )


@pytest.fixture
def stats() -> PipelineStats:
    return PipelineStats()


@pytest.fixture
def index_store() -> MemoryIndexStore:
    return MemoryIndexStore()


@pytest_asyncio.fixture
async def server_app(tmp_path: Path, monkeypatch, pipeline_config, indexer_config, index_store):
    """测试用 FastAPI app，Pipeline 手动创建（ASGITransport 不触发 lifespan）"""
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    from taskmill.core.store import create_overflow_store
    from taskmill.server.main import create_app
    from taskmill.server.services.pipeline import Pipeline

    app = create_app()
    overflow = await create_overflow_store(pipeline_config.overflow_db_path)
    pipeline = Pipeline(pipeline_config, indexer_config, overflow, index_store)
    pipeline.start()
    app.state.pipeline = pipeline

    yield app

    await pipeline.shutdown()


@pytest_asyncio.fixture
async def client(server_app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=server_app),
        base_url="http://test",
    ) as ac:
        yield ac
