"""事件接收路由

POST /api/events: 接收一批事件放入摄入队列，返回 202 和各结果计数。
入队不阻塞；队列满时事件转入溢出队列，两个队列都满才会丢弃。
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from taskmill.core.models import Event
from taskmill.core.queue import QueueOutcome

from ..deps import get_pipeline
from ..services.pipeline import Pipeline

router = APIRouter()


class EventBatch(BaseModel):
    """事件批次请求体"""

    events: list[Event] = Field(min_length=1, description="事件列表")


class EventBatchResponse(BaseModel):
    """事件批次响应"""

    accepted: int
    queued: int = 0
    overflowed: int = 0
    dropped: int = 0


@router.post("/api/events", response_model=EventBatchResponse, status_code=202)
async def receive_events(
    body: EventBatch,
    pipeline: Pipeline = Depends(get_pipeline),
):
    """接收事件批次（fire-and-forget）"""
    counts = {outcome: 0 for outcome in QueueOutcome}
    for event in body.events:
        counts[pipeline.send(event)] += 1

    return EventBatchResponse(
        accepted=counts[QueueOutcome.QUEUED] + counts[QueueOutcome.OVERFLOWED],
        queued=counts[QueueOutcome.QUEUED],
        overflowed=counts[QueueOutcome.OVERFLOWED],
        dropped=counts[QueueOutcome.DROPPED],
    )
