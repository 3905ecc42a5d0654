"""taskmill Indexer -- 索引存储抽象层

packages/indexer 的公开接口导出，以及按配置选择实现的工厂函数。
"""

from .client import HttpIndexStore
from .config import IndexerConfig, load_indexer_config
from .exceptions import IndexStoreError, IndexStoreUnreachableError
from .memory_store import MemoryIndexStore
from .models import BulkAction, BulkItemResult, IndexInfo, StoredDocument
from .protocols import IndexStore

__all__ = [
    "BulkAction",
    "BulkItemResult",
    "IndexInfo",
    "StoredDocument",
    "IndexStore",
    "HttpIndexStore",
    "MemoryIndexStore",
    "IndexerConfig",
    "load_indexer_config",
    "IndexStoreError",
    "IndexStoreUnreachableError",
    "create_index_store",
]


def create_index_store(config: IndexerConfig) -> IndexStore:
    """按 index_mode 创建索引存储

    Args:
        config: Indexer 配置

    Returns:
        elasticsearch 模式返回 HttpIndexStore，memory 模式返回 MemoryIndexStore
    """
    if config.index_mode == "memory":
        return MemoryIndexStore()
    return HttpIndexStore(config)
