"""合并规则测试

测试内容：
1. 同一事件重复应用与应用一次结果相同
2. 任意到达顺序得到相同的 status/start_time/end_time
3. 状态优先级：ERROR > SUCCESS > UNTERMINATED
4. 两份文档合并不回退
5. 无时区时间按 UTC 解释，事件 ID 按序输出
"""

import itertools
from datetime import timedelta

from taskmill.core.merging import apply_event, attach_child, merge_tasks, new_task
from taskmill.core.models import Event, EventKind, IndexedStatus, Task, TaskStatus


def _fold(events):
    task = new_task("t1")
    for event in events:
        apply_event(task, event)
    return task


class TestApplyEvent:
    """apply_event 单事件应用"""

    def test_start_sets_start_time_and_name(self, make_event):
        task = _fold([make_event("t1", EventKind.START, offset_s=5, name="build")])
        assert task.status == TaskStatus.UNTERMINATED
        assert task.start_time is not None
        assert task.name == "build"
        assert not task.is_terminal

    def test_duplicate_event_is_noop(self, make_event):
        """同一事件应用两次等于应用一次"""
        start = make_event("t1", EventKind.START, env="prod")
        task = new_task("t1")
        assert apply_event(task, start) is True
        snapshot = task.model_copy(deep=True)
        assert apply_event(task, start) is False
        assert task == snapshot

    def test_properties_last_writer_wins_without_dropping_keys(self, make_event):
        task = _fold(
            [
                make_event("t1", EventKind.START, env="prod", region="eu"),
                make_event("t1", EventKind.INFO, offset_s=1, env="staging"),
            ]
        )
        assert task.strings == {"env": "staging", "region": "eu"}

    def test_error_beats_success(self, make_event):
        task = _fold(
            [
                make_event("t1", EventKind.ERROR, offset_s=10),
                make_event("t1", EventKind.SUCCESS, offset_s=5),
            ]
        )
        assert task.status == TaskStatus.ERROR
        assert task.end_time == make_event("x", offset_s=10).ts

    def test_equal_rank_keeps_earliest_end(self, make_event):
        task = _fold(
            [
                make_event("t1", EventKind.SUCCESS, offset_s=20),
                make_event("t1", EventKind.SUCCESS, offset_s=8),
            ]
        )
        assert task.end_time == make_event("x", offset_s=8).ts

    def test_info_after_terminal_keeps_status(self, make_event):
        task = _fold(
            [
                make_event("t1", EventKind.SUCCESS, offset_s=3),
                make_event("t1", EventKind.INFO, offset_s=4, note="late"),
            ]
        )
        assert task.status == TaskStatus.SUCCESS
        assert task.strings["note"] == "late"


class TestOrderIndependence:
    """任意排列得到相同的最终状态"""

    def test_all_permutations_agree(self, make_event):
        events = [
            make_event("t1", EventKind.START, offset_s=0, name="job"),
            make_event("t1", EventKind.INFO, offset_s=1),
            make_event("t1", EventKind.SUCCESS, offset_s=7),
            make_event("t1", EventKind.ERROR, offset_s=9),
        ]
        results = {
            (t.status, t.start_time, t.end_time)
            for t in (_fold(p) for p in itertools.permutations(events))
        }
        assert len(results) == 1
        status, start, end = results.pop()
        assert status == TaskStatus.ERROR
        assert start == events[0].ts
        assert end == events[3].ts

    def test_success_before_start(self, make_event):
        start = make_event("t1", EventKind.START, offset_s=0)
        success = make_event("t1", EventKind.SUCCESS, offset_s=2)
        a = _fold([start, success])
        b = _fold([success, start])
        assert a.status == b.status == TaskStatus.SUCCESS
        assert a.start_time == b.start_time
        assert a.end_time == b.end_time
        assert b.is_complete
        assert b.duration_ms == 2000


class TestMergeTasks:
    """两份文档合并"""

    def test_stored_terminal_not_regressed_by_fragment(self, make_event):
        stored = _fold(
            [
                make_event("t1", EventKind.START, offset_s=0),
                make_event("t1", EventKind.SUCCESS, offset_s=5),
            ]
        )
        stored.indexed_status = IndexedStatus.FULLY_INDEXED
        fragment = _fold([make_event("t1", EventKind.INFO, offset_s=6, extra="x")])

        merged = merge_tasks(stored, fragment)
        assert merged.status == TaskStatus.SUCCESS
        assert merged.start_time == stored.start_time
        assert merged.end_time == stored.end_time
        assert merged.strings["extra"] == "x"
        assert merged.indexed_status == IndexedStatus.FULLY_INDEXED
        assert merged.document_status() == IndexedStatus.FULLY_INDEXED

    def test_partial_halves_merge_to_complete(self, make_event):
        first = _fold([make_event("t1", EventKind.START, offset_s=0, name="a")])
        second = _fold([make_event("t1", EventKind.SUCCESS, offset_s=3)])
        assert first.document_status() == IndexedStatus.PARTIALLY_INDEXED
        assert second.document_status() == IndexedStatus.PARTIALLY_INDEXED

        merged = merge_tasks(second, first)
        assert merged.is_complete
        assert merged.name == "a"
        assert merged.document_status() == IndexedStatus.FULLY_INDEXED

    def test_merge_is_idempotent(self, make_event):
        task = _fold(
            [
                make_event("t1", EventKind.START),
                make_event("t1", EventKind.ERROR, offset_s=1),
            ]
        )
        assert merge_tasks(task, task) == task

    def test_merge_does_not_mutate_inputs(self, make_event):
        base = _fold([make_event("t1", EventKind.START)])
        newer = _fold([make_event("t1", EventKind.SUCCESS, offset_s=1)])
        base_before = base.model_copy(deep=True)
        merge_tasks(base, newer)
        assert base == base_before

    def test_children_union(self):
        a = new_task("p")
        a.children = ["c1", "c2"]
        b = new_task("p")
        b.children = ["c2", "c3"]
        assert merge_tasks(a, b).children == ["c1", "c2", "c3"]


class TestAttachChild:
    """父子挂接"""

    def test_attach_sets_path_and_clears_orphan(self):
        root = new_task("root")
        parent = new_task("p")
        attach_child(root, parent)
        child = new_task("c")
        child.orphan = True

        assert attach_child(parent, child) is True
        assert child.parent_id == "p"
        assert child.parents_path == ["root", "p"]
        assert child.orphan is False
        assert parent.children == ["c"]

    def test_attach_twice_reports_no_change(self):
        parent = new_task("p")
        child = new_task("c")
        attach_child(parent, child)
        assert attach_child(parent, child) is False


class TestTimestampsAndEventIds:
    """时间戳归一化与事件 ID 记录"""

    def test_naive_timestamp_read_as_utc(self, make_event):
        aware = make_event("t1").ts
        event = Event(
            event_id="e1",
            task_id="t1",
            kind=EventKind.START,
            ts=aware.replace(tzinfo=None),
        )
        assert event.ts == aware
        assert event.ts.utcoffset() == timedelta(0)

    def test_stored_task_times_normalized(self, make_event):
        aware = make_event("t1").ts
        task = Task.model_validate({"task_id": "t1", "start_time": aware.replace(tzinfo=None)})
        assert task.start_time == aware

    def test_event_ids_dumped_sorted(self, make_event):
        task = _fold(
            [
                make_event("t1", EventKind.START, event_id="e2"),
                make_event("t1", EventKind.SUCCESS, offset_s=1, event_id="e1"),
            ]
        )
        assert task.model_dump(mode="json")["event_ids"] == ["e1", "e2"]
        assert Task.model_validate_json(task.model_dump_json()).event_ids == {"e1", "e2"}
