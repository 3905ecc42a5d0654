"""CLI 入口模块 -- python -m taskmill.core <command>

支持的命令：
  overflow-stats  统计溢出存储中待恢复的记录数
"""

import asyncio
import sys

from .config import get_overflow_db_path


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m taskmill.core <command>")
        print("命令:")
        print("  overflow-stats  统计溢出存储中待恢复的记录数")
        sys.exit(1)

    command = sys.argv[1]

    if command == "overflow-stats":
        asyncio.run(overflow_stats())
    else:
        print(f"未知命令: {command}")
        print("可用命令: overflow-stats")
        sys.exit(1)


async def overflow_stats() -> None:
    """打印各类型溢出记录数"""
    from .models.enums import SpillKind
    from .store import create_overflow_store

    db_path = get_overflow_db_path()
    print(f"溢出存储路径: {db_path}")

    store = await create_overflow_store(db_path)
    try:
        for kind in SpillKind:
            print(f"{kind.value}: {await store.count(kind)}")
    finally:
        await store.close()


if __name__ == "__main__":
    main()
