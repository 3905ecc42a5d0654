"""taskmill Core Store -- 溢出存储的 SQLite 持久化实现

提供工厂函数创建已初始化的溢出存储。
"""

from pathlib import Path

import aiosqlite

from .overflow_store import SqliteOverflowStore
from .protocols import OverflowStore
from .sqlite_init import init_db


async def create_overflow_store(db_path: str) -> SqliteOverflowStore:
    """创建溢出存储

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        SqliteOverflowStore 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return SqliteOverflowStore(conn)


__all__ = [
    "OverflowStore",
    "SqliteOverflowStore",
    "create_overflow_store",
    "init_db",
]
