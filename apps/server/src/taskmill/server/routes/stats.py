"""统计路由 -- GET /api/stats: 管道计数器与队列/缓存深度"""

from fastapi import APIRouter, Depends

from ..deps import get_pipeline
from ..services.pipeline import Pipeline

router = APIRouter()


@router.get("/api/stats")
async def stats(pipeline: Pipeline = Depends(get_pipeline)):
    """返回 PipelineStats 快照和当前深度"""
    return pipeline.snapshot()
