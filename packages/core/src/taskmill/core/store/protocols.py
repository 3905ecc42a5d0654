"""Store Protocol 接口定义

定义 OverflowStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.enums import SpillKind
from ..models.spill import SpilledRecord


class OverflowStore(Protocol):
    """持久化溢出存储接口

    仅在内存容量不足时使用；读取与删除分离，
    删除在消费成功之后进行（至少一次）。
    """

    async def put(
        self,
        key: str,
        kind: SpillKind,
        payload: str,
        inserted_at: float,
    ) -> None:
        """写入一条溢出记录"""
        ...

    async def put_many(self, records: list[SpilledRecord]) -> None:
        """单事务批量写入"""
        ...

    async def fetch_older_than(
        self,
        kind: SpillKind,
        min_age_s: float,
        max_count: int,
    ) -> list[SpilledRecord]:
        """取出写入时间早于 min_age_s 之前的记录（按写入时间正序，不删除）"""
        ...

    async def remove(self, keys: list[str]) -> None:
        """删除已成功消费的记录"""
        ...

    async def remove_expired(self, ttl_s: float, kind: SpillKind | None = None) -> int:
        """删除超过 TTL 仍未消费的记录，返回删除数"""
        ...

    async def count(self, kind: SpillKind | None = None) -> int:
        """统计记录数"""
        ...

    async def close(self) -> None:
        """关闭底层连接"""
        ...
