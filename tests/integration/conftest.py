"""集成测试共享 fixture"""

import asyncio
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskmill.core.config import PipelineConfig
from taskmill.core.store import create_overflow_store
from taskmill.indexer import IndexerConfig, IndexStore, MemoryIndexStore
from taskmill.server.services.pipeline import Pipeline


@pytest.fixture
def fast_config(tmp_path: Path) -> PipelineConfig:
    """短周期配置：恢复任务每 50ms 触发一次"""
    return PipelineConfig(
        events_queue_capacity=1000,
        overflow_queue_capacity=1000,
        drain_timeout_s=0.02,
        overflow_db_path=str(tmp_path / "sqlite" / "overflow.db"),
        min_lifetime_s=0,
        bulk_fetch_period_s=0.05,
        events_fetch_period_s=0.05,
        spill_max_tries=2,
        retry_backoff_s=0,
        termination_timeout_s=5,
    )


@pytest.fixture
def memory_indexer_config() -> IndexerConfig:
    return IndexerConfig(index_mode="memory", index_prefix="it", retry_wait_s=0)


@pytest_asyncio.fixture
async def open_pipeline(memory_indexer_config) -> AsyncGenerator[Callable, None]:
    """按需创建并启动 Pipeline，测试结束时统一关闭"""
    opened: list[Pipeline] = []

    async def _open(config: PipelineConfig, index_store: IndexStore | None = None) -> Pipeline:
        overflow = await create_overflow_store(config.overflow_db_path)
        pipeline = Pipeline(
            config,
            memory_indexer_config,
            overflow,
            index_store or MemoryIndexStore(),
        )
        pipeline.start()
        opened.append(pipeline)
        return pipeline

    yield _open

    for pipeline in opened:
        await pipeline.shutdown()


@pytest_asyncio.fixture
async def integration_client(
    monkeypatch, open_pipeline, fast_config
) -> AsyncGenerator[tuple[AsyncClient, Pipeline], None]:
    """FastAPI app + 运行中的 Pipeline"""
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    from taskmill.server.main import create_app

    app = create_app()
    pipeline = await open_pipeline(fast_config)
    app.state.pipeline = pipeline
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac, pipeline


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """轮询直到条件成立"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


@pytest.fixture
def wait():
    return wait_until
