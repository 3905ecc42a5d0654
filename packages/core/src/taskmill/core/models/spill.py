"""溢出记录模型 -- 持久化溢出存储中的一条记录"""

from pydantic import BaseModel, Field

from .enums import SpillKind


class SpilledRecord(BaseModel):
    """溢出记录

    payload 为序列化后的单个 Event（kind=event）
    或任务文档列表（kind=bulk）。
    """

    key: str = Field(description="记录键，ULID 格式，时间有序")
    kind: SpillKind = Field(description="记录类型")
    payload: str = Field(description="JSON 序列化内容")
    inserted_at: float = Field(description="写入时间（epoch 秒）")
