"""任务合并规则

把事件折叠进 Task、把两份 Task 文档合并成一份。
规则保证最终投影的 status/start_time/end_time 与事件到达顺序无关，
同一事件重复应用不改变结果。
"""

from datetime import datetime

from .models.enums import (
    EVENT_STATUS,
    STATUS_RANK,
    TERMINAL_STATES,
    EventKind,
    TaskStatus,
    max_indexed_status,
)
from .models.event import Event
from .models.task import Task


def new_task(task_id: str) -> Task:
    """创建空任务（首个事件到达时）"""
    return Task(task_id=task_id)


def _apply_status(
    task: Task,
    status: TaskStatus,
    end_time: datetime | None,
) -> bool:
    """按优先级合并状态，返回是否有变化

    高优先级状态胜出；同优先级终态取最早的结束时间。
    """
    if status not in TERMINAL_STATES:
        return False
    current_rank = STATUS_RANK[task.status]
    new_rank = STATUS_RANK[status]
    if new_rank > current_rank:
        task.status = status
        task.end_time = end_time
        return True
    if new_rank == current_rank and end_time is not None:
        if task.end_time is None or end_time < task.end_time:
            task.end_time = end_time
            return True
    return False


def apply_event(task: Task, event: Event) -> bool:
    """将单个事件应用到 Task（就地修改）

    Args:
        task: 目标任务（task_id 必须与事件一致）
        event: 要应用的事件

    Returns:
        True 如果任务有变化；事件已应用过时返回 False
    """
    if event.event_id in task.event_ids:
        return False
    task.event_ids.add(event.event_id)

    if event.kind == EventKind.START:
        if task.start_time is None or event.ts < task.start_time:
            task.start_time = event.ts
        if event.name:
            task.name = event.name
    elif event.name and not task.name:
        task.name = event.name

    if event.parent_id and task.parent_id is None:
        task.parent_id = event.parent_id

    _apply_status(task, EVENT_STATUS[event.kind], event.ts)

    # 后到的事件新增或覆盖 key，不删除已有 key
    task.strings.update(event.strings)
    task.text.update(event.text)
    task.metrics.update(event.metrics)
    return True


def _union(first: list[str], second: list[str]) -> list[str]:
    """按首见顺序合并去重"""
    merged = list(first)
    seen = set(first)
    for item in second:
        if item not in seen:
            merged.append(item)
            seen.add(item)
    return merged


def merge_tasks(base: Task, newer: Task) -> Task:
    """合并同一任务的两份文档，返回新 Task

    用于读-合并-写和合并修复：newer 的属性覆盖 base 的同名 key，
    状态/时间遵循与 apply_event 相同的优先级规则，索引侧状态只前进。

    Args:
        base: 较早的一份（通常来自存储）
        newer: 较新的一份（通常来自缓存或新写入）

    Returns:
        合并后的新 Task
    """
    merged = base.model_copy(deep=True)

    _apply_status(merged, newer.status, newer.end_time)

    if newer.start_time is not None and (
        merged.start_time is None or newer.start_time < merged.start_time
    ):
        merged.start_time = newer.start_time
        if newer.name:
            merged.name = newer.name
    elif not merged.name:
        merged.name = newer.name

    if merged.parent_id is None:
        merged.parent_id = newer.parent_id
    if len(newer.parents_path) > len(merged.parents_path):
        merged.parents_path = list(newer.parents_path)
    merged.orphan = merged.orphan and newer.orphan

    merged.children = _union(merged.children, newer.children)
    merged.event_ids = merged.event_ids | newer.event_ids
    merged.strings = {**merged.strings, **newer.strings}
    merged.text = {**merged.text, **newer.text}
    merged.metrics = {**merged.metrics, **newer.metrics}
    merged.indexed_status = max_indexed_status(
        merged.indexed_status, newer.indexed_status
    )
    return merged


def attach_child(parent: Task, child: Task) -> bool:
    """把子任务挂到父任务下，返回子任务或父任务是否有变化"""
    changed = False
    path = [*parent.parents_path, parent.task_id]
    if child.parent_id != parent.task_id:
        child.parent_id = parent.task_id
        changed = True
    if child.parents_path != path:
        child.parents_path = path
        changed = True
    if child.orphan:
        child.orphan = False
        changed = True
    if child.task_id not in parent.children:
        parent.children.append(child.task_id)
        changed = True
    return changed
