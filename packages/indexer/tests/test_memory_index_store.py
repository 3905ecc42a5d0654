"""MemoryIndexStore 测试"""

from contextlib import aclosing
from datetime import UTC, datetime

from taskmill.indexer import BulkAction, MemoryIndexStore


class TestMemoryIndexStore:
    """进程内索引存储"""

    async def test_bulk_creates_index_and_overwrites(self):
        store = MemoryIndexStore()
        await store.bulk([BulkAction(index="tm-1", doc_id="a", body={"v": 1})])
        await store.bulk([BulkAction(index="tm-1", doc_id="a", body={"v": 2})])

        assert store.index_names == ["tm-1"]
        assert store.documents("tm-1") == {"a": {"v": 2}}

    async def test_delete_action(self):
        store = MemoryIndexStore()
        await store.bulk([BulkAction(index="tm-1", doc_id="a", body={})])
        [result] = await store.bulk([BulkAction(op="delete", index="tm-1", doc_id="a")])
        assert result.ok
        assert store.documents("tm-1") == {}

    async def test_get_documents_by_pattern(self):
        store = MemoryIndexStore()
        await store.bulk(
            [
                BulkAction(index="tm-1", doc_id="a", body={"n": 1}),
                BulkAction(index="tm-2", doc_id="a", body={"n": 2}),
                BulkAction(index="other", doc_id="a", body={"n": 3}),
            ]
        )
        docs = await store.get_documents("tm-*", ["a", "missing"])
        assert [(d.index, d.source["n"]) for d in docs] == [("tm-1", 1), ("tm-2", 2)]

    async def test_scan_pages_by_term(self):
        store = MemoryIndexStore()
        await store.bulk(
            [
                BulkAction(index="tm-1", doc_id=str(i), body={"indexed_status": "PARTIALLY_INDEXED"})
                for i in range(5)
            ]
            + [BulkAction(index="tm-1", doc_id="full", body={"indexed_status": "FULLY_INDEXED"})]
        )
        pages = store.scan("tm-*", {"indexed_status": "PARTIALLY_INDEXED"}, page_size=2)
        async with aclosing(pages):
            sizes = [len(page) async for page in pages]
        assert sizes == [2, 2, 1]

    async def test_list_and_delete_indices(self):
        store = MemoryIndexStore()
        created = datetime(2025, 1, 1, tzinfo=UTC)
        await store.create_index("tm-old", created_at=created)
        await store.bulk([BulkAction(index="tm-new", doc_id="a", body={"x": "y"})])

        infos = {i.name: i for i in await store.list_indices("tm-*")}
        assert infos["tm-old"].created_at == created
        assert infos["tm-new"].doc_count == 1
        assert infos["tm-new"].size_bytes > 0

        await store.delete_index("tm-old")
        assert store.index_names == ["tm-new"]
