"""taskmill Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    EVENT_STATUS,
    STATUS_RANK,
    TERMINAL_STATES,
    EventKind,
    IndexedStatus,
    SpillKind,
    TaskStatus,
    max_indexed_status,
    validate_indexed_transition,
)
from .event import Event
from .spill import SpilledRecord
from .task import Task

__all__ = [
    # 枚举
    "EventKind",
    "TaskStatus",
    "IndexedStatus",
    "SpillKind",
    # 合并规则
    "STATUS_RANK",
    "EVENT_STATUS",
    "TERMINAL_STATES",
    "validate_indexed_transition",
    "max_indexed_status",
    # 模型
    "Event",
    "Task",
    "SpilledRecord",
]
