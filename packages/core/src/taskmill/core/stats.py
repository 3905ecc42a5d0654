"""管道计数器"""

from dataclasses import asdict, dataclass


@dataclass
class PipelineStats:
    """进程内计数器，/api/stats 和关闭日志使用"""

    events_received: int = 0
    events_queued: int = 0
    events_overflowed: int = 0
    events_dropped: int = 0
    events_malformed: int = 0
    events_failed: int = 0
    events_spilled: int = 0
    events_recovered: int = 0
    bulks_spilled: int = 0
    bulks_recovered: int = 0
    docs_indexed: int = 0
    docs_failed: int = 0
    records_corrupted: int = 0
    records_expired: int = 0
    indices_deleted: int = 0
    tasks_repaired: int = 0

    def snapshot(self) -> dict[str, int]:
        return asdict(self)
