"""HTTP 路由测试 -- /api/events、/api/stats、/health、/ready"""

import asyncio

from httpx import AsyncClient

EVENT = {
    "event_id": "e1",
    "task_id": "t1",
    "kind": "START",
    "ts": "2026-01-01T12:00:00Z",
    "name": "build",
}


class TestEventsRoute:
    """POST /api/events"""

    async def test_accepts_batch(self, client: AsyncClient):
        resp = await client.post(
            "/api/events",
            json={"events": [EVENT, {**EVENT, "event_id": "e2", "kind": "SUCCESS"}]},
        )
        assert resp.status_code == 202
        body = resp.json()
        assert body["accepted"] == 2
        assert body["queued"] == 2
        assert body["dropped"] == 0
        assert "X-Request-ID" in resp.headers

    async def test_missing_task_id_is_accepted_then_counted(self, client: AsyncClient, server_app):
        resp = await client.post("/api/events", json={"events": [{**EVENT, "task_id": None}]})
        assert resp.status_code == 202

        pipeline = server_app.state.pipeline
        for _ in range(200):
            if pipeline.stats.events_malformed:
                break
            await asyncio.sleep(0.01)
        assert pipeline.stats.events_malformed == 1

    async def test_invalid_body_rejected(self, client: AsyncClient):
        resp = await client.post("/api/events", json={"events": [{"event_id": "x"}]})
        assert resp.status_code == 422

    async def test_empty_batch_rejected(self, client: AsyncClient):
        resp = await client.post("/api/events", json={"events": []})
        assert resp.status_code == 422


class TestOperationsRoutes:
    """GET /api/stats /health /ready"""

    async def test_stats(self, client: AsyncClient):
        await client.post("/api/events", json={"events": [EVENT]})
        resp = await client.get("/api/stats")
        assert resp.status_code == 200
        body = resp.json()
        assert body["counters"]["events_received"] == 1
        assert "cache_size" in body

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_ready(self, client: AsyncClient):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ready"
        assert body["checks"]["overflow_store"] == "ok"
        assert body["checks"]["index_store"] == "ok"

    async def test_ready_reports_unreachable_index(self, client: AsyncClient, index_store, monkeypatch):
        async def down() -> bool:
            return False

        monkeypatch.setattr(index_store, "health_check", down)
        resp = await client.get("/ready")
        assert resp.status_code == 503
        assert resp.json()["checks"]["index_store"] == "unreachable"
