"""OverflowStore SQLite 实现

记录以 ULID 为键，按 (kind, inserted_at) 索引。
fetch 不删除记录，由调用方在消费成功后调用 remove。
超过 TTL 仍未被消费的记录由 remove_expired 清理。

Spiller、BulkIndexer 和恢复任务共用一个连接，写操作经 _write_lock 串行，
避免一个协程的 rollback 撤销另一个协程尚未提交的写入。
"""

import asyncio
import time

import aiosqlite

from ..models.enums import SpillKind
from ..models.spill import SpilledRecord

_UPSERT_SQL = """
INSERT OR REPLACE INTO spilled (key, kind, payload, inserted_at)
VALUES (?, ?, ?, ?)
"""


class SqliteOverflowStore:
    """OverflowStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._write_lock = asyncio.Lock()

    @property
    def conn(self) -> aiosqlite.Connection:
        return self._conn

    async def put(
        self,
        key: str,
        kind: SpillKind,
        payload: str,
        inserted_at: float,
    ) -> None:
        """写入一条溢出记录并提交"""
        async with self._write_lock:
            try:
                await self._conn.execute(_UPSERT_SQL, (key, kind.value, payload, inserted_at))
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    async def put_many(self, records: list[SpilledRecord]) -> None:
        """单事务批量写入"""
        if not records:
            return
        async with self._write_lock:
            try:
                await self._conn.executemany(
                    _UPSERT_SQL,
                    [(r.key, r.kind.value, r.payload, r.inserted_at) for r in records],
                )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    async def fetch_older_than(
        self,
        kind: SpillKind,
        min_age_s: float,
        max_count: int,
    ) -> list[SpilledRecord]:
        """取出足够"老"的记录，按写入时间正序"""
        cutoff = time.time() - min_age_s
        cursor = await self._conn.execute(
            """
            SELECT key, kind, payload, inserted_at FROM spilled
            WHERE kind = ? AND inserted_at <= ?
            ORDER BY inserted_at ASC
            LIMIT ?
            """,
            (kind.value, cutoff, max_count),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def remove(self, keys: list[str]) -> None:
        """删除已消费的记录"""
        if not keys:
            return
        async with self._write_lock:
            try:
                await self._conn.executemany(
                    "DELETE FROM spilled WHERE key = ?",
                    [(key,) for key in keys],
                )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise

    async def remove_expired(self, ttl_s: float, kind: SpillKind | None = None) -> int:
        """删除写入时间早于 ttl_s 之前的记录

        Returns:
            删除的记录数
        """
        cutoff = time.time() - ttl_s
        async with self._write_lock:
            try:
                if kind is None:
                    cursor = await self._conn.execute(
                        "DELETE FROM spilled WHERE inserted_at < ?",
                        (cutoff,),
                    )
                else:
                    cursor = await self._conn.execute(
                        "DELETE FROM spilled WHERE kind = ? AND inserted_at < ?",
                        (kind.value, cutoff),
                    )
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise
        return cursor.rowcount

    async def count(self, kind: SpillKind | None = None) -> int:
        """统计记录数，kind 为 None 时统计全部"""
        if kind is None:
            cursor = await self._conn.execute("SELECT COUNT(*) FROM spilled")
        else:
            cursor = await self._conn.execute(
                "SELECT COUNT(*) FROM spilled WHERE kind = ?",
                (kind.value,),
            )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def close(self) -> None:
        await self._conn.close()

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> SpilledRecord:
        """将数据库行转换为 SpilledRecord"""
        return SpilledRecord(
            key=row[0],
            kind=SpillKind(row[1]),
            payload=row[2],
            inserted_at=row[3],
        )
