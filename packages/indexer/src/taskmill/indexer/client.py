"""HttpIndexStore -- Elasticsearch REST API 封装

通过 httpx.AsyncClient 调用 _bulk、_search（含 scroll）、_cat/indices 和索引管理接口。
连接类错误映射为 IndexStoreUnreachableError，HTTP 错误映射为 IndexStoreError。
"""

import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from .config import IndexerConfig
from .exceptions import IndexStoreError, IndexStoreUnreachableError
from .models import BulkAction, BulkItemResult, IndexInfo, StoredDocument

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 精确匹配查询用到的字段，建索引时声明为 keyword
_KEYWORD_FIELDS = (
    "task_id",
    "name",
    "status",
    "parent_id",
    "parents_path",
    "children",
    "indexed_status",
)


class HttpIndexStore:
    """Elasticsearch 索引存储"""

    def __init__(
        self,
        config: IndexerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            config: Indexer 配置
            transport: 可选 transport（测试时注入 httpx.MockTransport）
        """
        self._config = config
        self._base_url = config.elasticsearch_url.rstrip("/")
        auth = None
        if config.elasticsearch_user:
            auth = httpx.BasicAuth(
                config.elasticsearch_user,
                config.elasticsearch_password.get_secret_value(),
            )
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            auth=auth,
            timeout=config.timeout_s,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        ok_statuses: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """发送请求并统一映射错误

        Raises:
            IndexStoreUnreachableError: 连接失败或超时
            IndexStoreError: 非 2xx 且不在 ok_statuses 中
        """
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise IndexStoreUnreachableError(url=self._base_url, original_error=e) from e

        if resp.is_success or resp.status_code in ok_statuses:
            return resp
        raise IndexStoreError(
            message=f"{method} {path} 返回 {resp.status_code}: {resp.text[:500]}",
            recoverable=resp.status_code == 429 or resp.status_code >= 500,
        )

    async def bulk(self, actions: list[BulkAction]) -> list[BulkItemResult]:
        """提交一批 index/delete 操作，返回逐文档结果"""
        if not actions:
            return []

        lines: list[str] = []
        for action in actions:
            lines.append(json.dumps({action.op: {"_index": action.index, "_id": action.doc_id}}))
            if action.op == "index":
                lines.append(json.dumps(action.body or {}))
        payload = "\n".join(lines) + "\n"

        resp = await self._request(
            "POST",
            "/_bulk",
            content=payload.encode(),
            headers={"Content-Type": "application/x-ndjson"},
        )
        data = resp.json()

        results: list[BulkItemResult] = []
        for action, item in zip(actions, data.get("items", []), strict=False):
            detail = item.get(action.op, {})
            status = int(detail.get("status", 500))
            # 删除不存在的文档视为成功
            ok = 200 <= status < 300 or (action.op == "delete" and status == 404)
            error = detail.get("error", "")
            if isinstance(error, dict):
                error = f"{error.get('type', '')}: {error.get('reason', '')}"
            results.append(
                BulkItemResult(
                    doc_id=action.doc_id,
                    index=detail.get("_index", action.index),
                    ok=ok,
                    status=status,
                    error="" if ok else str(error),
                )
            )
        if len(results) < len(actions):
            raise IndexStoreError(
                message=f"bulk 响应条目数不足: {len(results)}/{len(actions)}",
                recoverable=True,
            )
        return results

    async def get_documents(self, index: str, ids: list[str]) -> list[StoredDocument]:
        """按 ID 查询（index 可为通配模式，返回所有索引中的副本）

        ID 按 fetch_by_ids_partitions 分组请求，每组按 max_search_size 分页，
        单页结果数不超过 max_result_window。
        """
        partition = self._config.fetch_by_ids_partitions
        docs: list[StoredDocument] = []
        for start in range(0, len(ids), partition):
            chunk = ids[start : start + partition]
            pages = self._scroll(index, {"ids": {"values": chunk}}, self._config.max_search_size)
            async with aclosing(pages):
                async for page in pages:
                    docs.extend(page)
        return docs

    def scan(
        self,
        index: str,
        term: dict[str, str],
        page_size: int,
    ) -> AsyncIterator[list[StoredDocument]]:
        """按精确匹配条件用 scroll 分页扫描"""
        return self._scroll(index, {"term": term}, page_size)

    async def _scroll(
        self,
        index: str,
        query: dict,
        page_size: int,
    ) -> AsyncIterator[list[StoredDocument]]:
        """_search + scroll 分页，不足一页即结束，退出时清除 scroll 上下文"""
        keep_alive = f"{int(self._config.scroll_timeout_s)}s"
        resp = await self._request(
            "POST",
            f"/{index}/_search",
            params={
                "scroll": keep_alive,
                "ignore_unavailable": "true",
                "allow_no_indices": "true",
            },
            json={"query": query, "size": page_size},
        )
        data = resp.json()
        scroll_id = data.get("_scroll_id")
        try:
            while True:
                page = self._hits(data)
                if page:
                    yield page
                if len(page) < page_size or not scroll_id:
                    return
                resp = await self._request(
                    "POST",
                    "/_search/scroll",
                    json={"scroll": keep_alive, "scroll_id": scroll_id},
                )
                data = resp.json()
                scroll_id = data.get("_scroll_id", scroll_id)
        finally:
            if scroll_id:
                await self._clear_scroll(scroll_id)

    async def _clear_scroll(self, scroll_id: str) -> None:
        try:
            await self._request(
                "DELETE",
                "/_search/scroll",
                json={"scroll_id": [scroll_id]},
                ok_statuses=(404,),
            )
        except IndexStoreError as e:
            log.debug("clear_scroll_failed", error=str(e))

    async def list_indices(self, pattern: str) -> list[IndexInfo]:
        """列出匹配模式的索引（_cat/indices）"""
        resp = await self._request(
            "GET",
            f"/_cat/indices/{pattern}",
            params={
                "format": "json",
                "bytes": "b",
                "h": "index,docs.count,store.size,creation.date",
            },
            ok_statuses=(404,),
        )
        if resp.status_code == 404:
            return []

        indices: list[IndexInfo] = []
        for row in resp.json():
            created_ms = int(row.get("creation.date") or 0)
            indices.append(
                IndexInfo(
                    name=row["index"],
                    created_at=datetime.fromtimestamp(created_ms / 1000, tz=UTC),
                    size_bytes=int(row.get("store.size") or 0),
                    doc_count=int(row.get("docs.count") or 0),
                )
            )
        return indices

    async def create_index(self, name: str) -> None:
        """创建索引，已存在时忽略"""
        body = {
            "settings": {
                "number_of_shards": self._config.number_of_shards,
                "number_of_replicas": self._config.number_of_replicas,
                "mapping.total_fields.limit": self._config.max_total_fields,
            },
            "mappings": {
                "properties": {field: {"type": "keyword"} for field in _KEYWORD_FIELDS},
            },
        }
        resp = await self._request("PUT", f"/{name}", json=body, ok_statuses=(400,))
        if resp.status_code == 400:
            if "resource_already_exists_exception" not in resp.text:
                raise IndexStoreError(
                    message=f"创建索引 {name} 失败: {resp.text[:500]}",
                    recoverable=False,
                )
            return
        log.info("index_created", index=name)

    async def delete_index(self, name: str) -> None:
        """删除索引，不存在时忽略"""
        await self._request("DELETE", f"/{name}", ok_statuses=(404,))

    async def health_check(self) -> bool:
        """检查 Elasticsearch 可达性

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        try:
            resp = await self._client.get("/", timeout=HEALTH_CHECK_TIMEOUT_S)
            return resp.status_code == 200
        except Exception as e:
            log.debug("health_check_failed", url=self._base_url, error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _hits(data: dict) -> list[StoredDocument]:
        """把 _search 响应的 hits 转为 StoredDocument"""
        return [
            StoredDocument(
                index=hit["_index"],
                doc_id=hit["_id"],
                source=hit.get("_source", {}),
            )
            for hit in data.get("hits", {}).get("hits", [])
        ]
