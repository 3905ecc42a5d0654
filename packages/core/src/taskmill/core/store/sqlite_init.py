"""SQLite 数据库初始化 -- 溢出存储

PRAGMA 配置 + spilled 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# spilled 表 DDL
_SPILLED_DDL = """
CREATE TABLE IF NOT EXISTS spilled (
    key          TEXT PRIMARY KEY,
    kind         TEXT NOT NULL,
    payload      TEXT NOT NULL,
    inserted_at  REAL NOT NULL
);
"""

_SPILLED_INDEXES = [
    # 按类型 + 写入时间取出最早的记录
    "CREATE INDEX IF NOT EXISTS idx_spilled_kind_inserted ON spilled(kind, inserted_at);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_SPILLED_DDL)

    # 创建索引
    for idx_sql in _SPILLED_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
