"""周期任务调度 -- 固定周期触发，两次触发之间等待 stop_event"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

log = structlog.get_logger()


async def wait_or_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """等待 timeout 秒，期间 stop_event 置位则提前返回

    Returns:
        True 如果 stop_event 已置位
    """
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except TimeoutError:
        return False
    return True


async def run_periodic(
    name: str,
    period_s: float,
    job: Callable[[], Awaitable[object]],
    stop_event: asyncio.Event,
) -> None:
    """每隔 period_s 执行一次 job，直到 stop_event 置位

    单次执行失败只记录日志，下个周期重试。
    """
    log.debug("periodic_job_started", job=name, period_s=period_s)
    while not await wait_or_stop(stop_event, period_s):
        try:
            await job()
        except Exception as e:
            log.error(
                "periodic_job_failed",
                job=name,
                error=str(e),
                error_type=type(e).__name__,
            )
    log.debug("periodic_job_stopped", job=name)
