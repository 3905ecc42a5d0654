"""全局 pytest 配置 -- 事件构造 fixture + 临时溢出存储"""

import itertools
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from taskmill.core.models import Event, EventKind
from taskmill.core.store import SqliteOverflowStore, create_overflow_store

BASE_TS = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的单调时钟（缓存持有时间测试用）"""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """事件工厂：ts = BASE_TS + offset_s，event_id 自增"""
    counter = itertools.count(1)

    def _make(
        task_id: str | None,
        kind: EventKind = EventKind.START,
        offset_s: float = 0,
        event_id: str | None = None,
        parent_id: str | None = None,
        name: str = "",
        **strings: str,
    ) -> Event:
        return Event(
            event_id=event_id or f"evt-{next(counter):04d}",
            task_id=task_id,
            parent_id=parent_id,
            kind=kind,
            ts=BASE_TS + timedelta(seconds=offset_s),
            name=name,
            strings=strings,
        )

    return _make


@pytest_asyncio.fixture
async def overflow_store(tmp_path: Path) -> AsyncGenerator[SqliteOverflowStore, None]:
    """已初始化的临时溢出存储"""
    store = await create_overflow_store(str(tmp_path / "sqlite" / "overflow.db"))
    yield store
    await store.close()
