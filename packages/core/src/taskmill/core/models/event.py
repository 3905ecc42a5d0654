"""Event Domain Model

事件不可变：生产者发出后不再修改。
task_id 缺失的事件视为畸形事件，由合并引擎计数后丢弃。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import EventKind


def ensure_utc(value: datetime | None) -> datetime | None:
    """无时区的时间按 UTC 解释，有时区的统一换算到 UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _truncate_values(
    values: dict[str, str],
    default_max_chars: int,
    length_map: dict[str, int],
) -> dict[str, str]:
    """按 key 截断字符串属性值"""
    truncated: dict[str, str] = {}
    for key, value in values.items():
        limit = length_map.get(key, default_max_chars)
        truncated[key] = value[:limit] if len(value) > limit else value
    return truncated


class Event(BaseModel):
    """Event 数据模型

    一个事件描述任务生命周期中的一个事实（开始/成功/失败/信息）。
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(description="事件唯一标识")
    task_id: str | None = Field(default=None, description="所属任务 ID，缺失即畸形事件")
    parent_id: str | None = Field(default=None, description="父任务 ID")
    kind: EventKind = Field(description="事件类型")
    ts: datetime = Field(description="事件时间戳")
    name: str = Field(default="", description="任务名称")
    strings: dict[str, str] = Field(default_factory=dict, description="短字符串属性")
    text: dict[str, str] = Field(default_factory=dict, description="长文本属性")
    metrics: dict[str, float] = Field(default_factory=dict, description="数值指标")

    @field_validator("ts")
    @classmethod
    def _ts_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def is_malformed(self) -> bool:
        return not self.task_id

    def truncated(
        self,
        default_max_chars: int,
        length_map: dict[str, int] | None = None,
    ) -> "Event":
        """返回属性值按长度限制截断后的副本

        Args:
            default_max_chars: 默认最大字符数
            length_map: 按属性 key 覆盖的最大字符数

        Returns:
            截断后的新 Event（无需截断时返回自身）
        """
        overrides = length_map or {}
        strings = _truncate_values(self.strings, default_max_chars, overrides)
        text = _truncate_values(self.text, default_max_chars, overrides)
        if strings == self.strings and text == self.text:
            return self
        return self.model_copy(update={"strings": strings, "text": text})
