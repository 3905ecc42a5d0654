"""IndexStore Protocol 接口定义

索引存储的抽象接口：bulk 写入、按 ID 查询、分页扫描、索引管理。
"""

from collections.abc import AsyncIterator
from typing import Protocol

from .models import BulkAction, BulkItemResult, IndexInfo, StoredDocument


class IndexStore(Protocol):
    """索引存储接口"""

    async def bulk(self, actions: list[BulkAction]) -> list[BulkItemResult]:
        """提交一批操作，返回逐文档结果（与 actions 顺序一致）

        Raises:
            IndexStoreUnreachableError: 连接失败
            IndexStoreError: 整批被拒绝
        """
        ...

    async def get_documents(self, index: str, ids: list[str]) -> list[StoredDocument]:
        """按 ID 查询文档，index 可以是通配模式"""
        ...

    def scan(
        self,
        index: str,
        term: dict[str, str],
        page_size: int,
    ) -> AsyncIterator[list[StoredDocument]]:
        """按精确匹配条件分页扫描文档"""
        ...

    async def list_indices(self, pattern: str) -> list[IndexInfo]:
        """列出匹配模式的索引及其元数据"""
        ...

    async def create_index(self, name: str) -> None:
        """创建索引（已存在时不报错）"""
        ...

    async def delete_index(self, name: str) -> None:
        """删除索引"""
        ...

    async def health_check(self) -> bool:
        """可达性检查，不抛异常"""
        ...

    async def close(self) -> None:
        """释放连接"""
        ...
