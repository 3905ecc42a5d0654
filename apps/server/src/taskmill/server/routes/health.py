"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含溢出存储、索引存储和摄入队列。
"""

import structlog
from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from ..deps import get_pipeline
from ..services.pipeline import Pipeline

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(pipeline: Pipeline = Depends(get_pipeline)):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. overflow_store: 溢出存储可查询
    2. index_store: 索引存储可达
    3. events_queue: 事件队列未满（满载时只是降级到溢出，不影响就绪）
    4. pipeline: 工作协程运行中
    """
    checks: dict[str, str | int] = {}
    all_ok = True

    try:
        checks["spilled_records"] = await pipeline.overflow_store.count()
        checks["overflow_store"] = "ok"
    except Exception as e:
        log.warning("ready_check_failed", check="overflow_store", error=str(e))
        checks["overflow_store"] = f"error: {e}"
        all_ok = False

    if await pipeline.index_store.health_check():
        checks["index_store"] = "ok"
    else:
        checks["index_store"] = "unreachable"
        all_ok = False

    capacity = pipeline.config.events_queue_capacity
    checks["events_queue"] = "saturated" if pipeline.queue.events_depth >= capacity else "ok"

    if pipeline.running:
        checks["pipeline"] = "ok"
    else:
        checks["pipeline"] = "stopped"
        all_ok = False

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
