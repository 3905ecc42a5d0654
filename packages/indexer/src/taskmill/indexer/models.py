"""数据模型 -- bulk 操作、逐文档结果、索引元数据"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class BulkAction(BaseModel):
    """bulk 请求中的一个操作"""

    op: Literal["index", "delete"] = Field(default="index", description="操作类型")
    index: str = Field(description="目标索引名")
    doc_id: str = Field(description="文档 ID")
    body: dict[str, Any] | None = Field(default=None, description="文档主体（delete 时为空）")


class BulkItemResult(BaseModel):
    """bulk 响应中单个文档的结果"""

    doc_id: str
    index: str
    ok: bool
    status: int = Field(default=200, description="HTTP 状态码")
    error: str = Field(default="", description="失败原因")


class StoredDocument(BaseModel):
    """存储中的一份文档"""

    index: str
    doc_id: str
    source: dict[str, Any] = Field(default_factory=dict)


class IndexInfo(BaseModel):
    """索引元数据"""

    name: str
    created_at: datetime = Field(description="创建时间")
    size_bytes: int = Field(default=0, ge=0, description="存储大小（字节）")
    doc_count: int = Field(default=0, ge=0, description="文档数")
