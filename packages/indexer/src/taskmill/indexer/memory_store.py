"""MemoryIndexStore -- 进程内索引存储

index_mode=memory 时使用，也是测试中的默认替身。
行为与 HttpIndexStore 对齐：bulk 写入自动建索引，通配模式按 fnmatch 匹配。
"""

import copy
import fnmatch
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from .models import BulkAction, BulkItemResult, IndexInfo, StoredDocument


class MemoryIndexStore:
    """基于 dict 的索引存储"""

    def __init__(self) -> None:
        self._indices: dict[str, dict[str, dict]] = {}
        self._created_at: dict[str, datetime] = {}

    def _matching(self, pattern: str) -> list[str]:
        return sorted(name for name in self._indices if fnmatch.fnmatchcase(name, pattern))

    def _ensure(self, name: str, created_at: datetime | None = None) -> dict[str, dict]:
        if name not in self._indices:
            self._indices[name] = {}
            self._created_at[name] = created_at or datetime.now(UTC)
        return self._indices[name]

    async def bulk(self, actions: list[BulkAction]) -> list[BulkItemResult]:
        results: list[BulkItemResult] = []
        for action in actions:
            if action.op == "index":
                docs = self._ensure(action.index)
                docs[action.doc_id] = copy.deepcopy(action.body or {})
                status = 200
            else:
                docs = self._indices.get(action.index, {})
                status = 200 if docs.pop(action.doc_id, None) is not None else 404
            results.append(
                BulkItemResult(
                    doc_id=action.doc_id,
                    index=action.index,
                    ok=True,
                    status=status,
                )
            )
        return results

    async def get_documents(self, index: str, ids: list[str]) -> list[StoredDocument]:
        wanted = set(ids)
        found: list[StoredDocument] = []
        for name in self._matching(index):
            for doc_id, source in self._indices[name].items():
                if doc_id in wanted:
                    found.append(
                        StoredDocument(index=name, doc_id=doc_id, source=copy.deepcopy(source))
                    )
        return found

    async def scan(
        self,
        index: str,
        term: dict[str, str],
        page_size: int,
    ) -> AsyncIterator[list[StoredDocument]]:
        matches: list[StoredDocument] = []
        for name in self._matching(index):
            for doc_id, source in self._indices[name].items():
                if all(_term_matches(source.get(k), v) for k, v in term.items()):
                    matches.append(
                        StoredDocument(index=name, doc_id=doc_id, source=copy.deepcopy(source))
                    )
        for start in range(0, len(matches), page_size):
            yield matches[start : start + page_size]

    async def list_indices(self, pattern: str) -> list[IndexInfo]:
        return [
            IndexInfo(
                name=name,
                created_at=self._created_at[name],
                size_bytes=sum(len(json.dumps(doc)) for doc in self._indices[name].values()),
                doc_count=len(self._indices[name]),
            )
            for name in self._matching(pattern)
        ]

    async def create_index(self, name: str, created_at: datetime | None = None) -> None:
        """创建索引；created_at 仅供测试模拟旧索引"""
        self._ensure(name, created_at)

    async def delete_index(self, name: str) -> None:
        self._indices.pop(name, None)
        self._created_at.pop(name, None)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass

    def documents(self, index: str) -> dict[str, dict]:
        """返回某个索引下的全部文档（只读副本）"""
        return copy.deepcopy(self._indices.get(index, {}))

    @property
    def index_names(self) -> list[str]:
        return sorted(self._indices)


def _term_matches(value: object, expected: str) -> bool:
    if isinstance(value, list):
        return expected in value
    return value == expected
