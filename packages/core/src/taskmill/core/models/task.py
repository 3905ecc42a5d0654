"""Task Domain Model

Task 是同一 task_id 下所有事件合并后的聚合视图，
既是缓存中的可变状态，也是写入索引存储的文档主体。
"""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field, field_serializer, field_validator

from .enums import TERMINAL_STATES, IndexedStatus, TaskStatus
from .event import ensure_utc


class Task(BaseModel):
    """Task 数据模型 -- 缓存中的可变聚合，也是索引文档"""

    task_id: str = Field(description="任务唯一标识")
    name: str = Field(default="", description="任务名称")
    status: TaskStatus = Field(default=TaskStatus.UNTERMINATED, description="当前状态")
    start_time: datetime | None = Field(default=None, description="开始时间（START 事件最早时间）")
    end_time: datetime | None = Field(default=None, description="结束时间（终态事件时间）")
    parent_id: str | None = Field(default=None, description="父任务 ID")
    parents_path: list[str] = Field(default_factory=list, description="祖先任务 ID，根在前")
    children: list[str] = Field(default_factory=list, description="子任务 ID（首见顺序，去重）")
    orphan: bool = Field(default=False, description="父任务尚未出现")
    strings: dict[str, str] = Field(default_factory=dict)
    text: dict[str, str] = Field(default_factory=dict)
    metrics: dict[str, float] = Field(default_factory=dict)
    event_ids: set[str] = Field(default_factory=set, description="已应用的事件 ID")
    indexed_status: IndexedStatus = Field(
        default=IndexedStatus.NOT_INDEXED,
        description="索引侧状态",
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def _times_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @field_serializer("event_ids")
    def _event_ids_sorted(self, event_ids: set[str]) -> list[str]:
        return sorted(event_ids)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_ms(self) -> int | None:
        """耗时（毫秒），开始和结束时间都已知时才可计算"""
        if self.start_time is None or self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def is_complete(self) -> bool:
        """终态且开始时间已知，文档即可视为完整"""
        return self.is_terminal and self.start_time is not None

    def document_status(self) -> IndexedStatus:
        """按当前内容推导写入文档时的索引侧状态"""
        if self.is_complete:
            return IndexedStatus.FULLY_INDEXED
        return IndexedStatus.PARTIALLY_INDEXED

    def to_document(self) -> dict:
        """序列化为索引文档主体"""
        body = self.model_dump(mode="json")
        body["indexed_status"] = self.document_status().value
        return body

    @classmethod
    def from_document(cls, body: dict) -> "Task":
        """从索引文档主体还原 Task"""
        data = {k: v for k, v in body.items() if k != "duration_ms"}
        return cls(**data)
