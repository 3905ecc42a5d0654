"""端到端场景 -- HTTP 接收事件到索引文档

1. Start + Success -> 一份 FULLY_INDEXED 的 Success 文档，含开始与结束时间
2. Success 先于 Start 到达 -> 相同的最终状态
3. 父任务晚于子任务到达 -> 子任务挂接到父任务
"""

from taskmill.core.models import IndexedStatus, TaskStatus
from taskmill.server.services.bulk_indexer import index_name


def _event(event_id: str, task_id: str, kind: str, ts: str, **extra) -> dict:
    return {"event_id": event_id, "task_id": task_id, "kind": kind, "ts": ts, **extra}


class TestStartSuccess:
    """SC-1: Start + Success"""

    async def test_start_then_success(self, integration_client, wait):
        client, pipeline = integration_client
        resp = await client.post(
            "/api/events",
            json={
                "events": [
                    _event("e1", "t1", "START", "2026-01-01T12:00:00Z", name="deploy"),
                    _event("e2", "t1", "SUCCESS", "2026-01-01T12:00:05Z"),
                ]
            },
        )
        assert resp.status_code == 202

        index = index_name("it")
        await wait(lambda: "t1" in pipeline.index_store.documents(index))
        doc = pipeline.index_store.documents(index)["t1"]
        assert doc["status"] == TaskStatus.SUCCESS
        assert doc["name"] == "deploy"
        assert doc["start_time"].startswith("2026-01-01T12:00:00")
        assert doc["end_time"].startswith("2026-01-01T12:00:05")
        assert doc["duration_ms"] == 5000
        assert doc["indexed_status"] == IndexedStatus.FULLY_INDEXED

    async def test_success_before_start(self, integration_client, wait):
        client, pipeline = integration_client
        await client.post(
            "/api/events",
            json={"events": [_event("e2", "t1", "SUCCESS", "2026-01-01T12:00:05Z")]},
        )
        await client.post(
            "/api/events",
            json={"events": [_event("e1", "t1", "START", "2026-01-01T12:00:00Z")]},
        )

        index = index_name("it")

        def complete() -> bool:
            doc = pipeline.index_store.documents(index).get("t1")
            return doc is not None and doc["indexed_status"] == IndexedStatus.FULLY_INDEXED

        await wait(complete)
        doc = pipeline.index_store.documents(index)["t1"]
        assert doc["status"] == TaskStatus.SUCCESS
        assert doc["duration_ms"] == 5000


class TestHierarchy:
    """SC-3: 子任务先到"""

    async def test_child_attached_when_parent_arrives(self, integration_client, wait):
        client, pipeline = integration_client
        await client.post(
            "/api/events",
            json={
                "events": [
                    _event("c-s", "child", "START", "2026-01-01T12:00:01Z", parent_id="root"),
                    _event("c-e", "child", "SUCCESS", "2026-01-01T12:00:02Z", parent_id="root"),
                ]
            },
        )
        await client.post(
            "/api/events",
            json={
                "events": [
                    _event("r-s", "root", "START", "2026-01-01T12:00:00Z"),
                    _event("r-e", "root", "SUCCESS", "2026-01-01T12:00:03Z"),
                ]
            },
        )

        index = index_name("it")

        def attached() -> bool:
            docs = pipeline.index_store.documents(index)
            return (
                "root" in docs
                and docs["root"]["children"] == ["child"]
                and docs.get("child", {}).get("orphan") is False
            )

        await wait(attached)
        assert pipeline.index_store.documents(index)["child"]["parents_path"] == ["root"]
