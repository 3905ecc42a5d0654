"""枚举定义 -- 事件类型、任务状态、索引侧状态

包含 EventKind、TaskStatus、IndexedStatus 枚举，
以及 STATUS_RANK 合并优先级和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class EventKind(StrEnum):
    """事件类型"""

    START = "START"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    INFO = "INFO"


class TaskStatus(StrEnum):
    """Task 状态"""

    UNTERMINATED = "UNTERMINATED"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class IndexedStatus(StrEnum):
    """索引侧状态 -- 存储中的文档是否反映完整任务状态"""

    NOT_INDEXED = "NOT_INDEXED"
    PARTIALLY_INDEXED = "PARTIALLY_INDEXED"
    FULLY_INDEXED = "FULLY_INDEXED"


TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.SUCCESS,
    TaskStatus.ERROR,
}

# 合并优先级：高者胜出，终态永远压过非终态
STATUS_RANK: dict[TaskStatus, int] = {
    TaskStatus.UNTERMINATED: 0,
    TaskStatus.SUCCESS: 1,
    TaskStatus.ERROR: 2,
}

# 事件类型 -> 该事件隐含的任务状态
EVENT_STATUS: dict[EventKind, TaskStatus] = {
    EventKind.START: TaskStatus.UNTERMINATED,
    EventKind.INFO: TaskStatus.UNTERMINATED,
    EventKind.SUCCESS: TaskStatus.SUCCESS,
    EventKind.ERROR: TaskStatus.ERROR,
}

_INDEXED_ORDER: dict[IndexedStatus, int] = {
    IndexedStatus.NOT_INDEXED: 0,
    IndexedStatus.PARTIALLY_INDEXED: 1,
    IndexedStatus.FULLY_INDEXED: 2,
}


def validate_indexed_transition(
    from_status: IndexedStatus, to_status: IndexedStatus
) -> bool:
    """验证索引侧状态流转是否合法（单调，只能前进或保持）

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    return _INDEXED_ORDER[to_status] >= _INDEXED_ORDER[from_status]


def max_indexed_status(*statuses: IndexedStatus) -> IndexedStatus:
    """返回多个索引侧状态中最靠后的一个"""
    return max(statuses, key=lambda s: _INDEXED_ORDER[s])


class SpillKind(StrEnum):
    """溢出记录类型"""

    EVENT = "event"
    BULK = "bulk"
