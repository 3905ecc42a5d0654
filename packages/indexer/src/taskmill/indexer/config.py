"""IndexerConfig -- 索引存储与写入配置加载

从环境变量加载配置（前缀 TASKMILL_），不可变，显式传递。
elasticsearch 模式缺少 TASKMILL_ELASTICSEARCH_URL 时构造即失败。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from taskmill.core.config import ENV_PREFIX, ConfigError, read_number_env

log = structlog.get_logger()


class IndexerConfig(BaseModel):
    """Indexer 配置

    环境变量:
        TASKMILL_INDEX_MODE: 存储模式（elasticsearch/memory）
        TASKMILL_ELASTICSEARCH_URL: Elasticsearch 地址
        TASKMILL_ELASTICSEARCH_USER / TASKMILL_ELASTICSEARCH_PASSWORD: basic auth
        其余数值字段: TASKMILL_ + 字段名大写
    """

    model_config = ConfigDict(frozen=True)

    index_mode: Literal["elasticsearch", "memory"] = Field(
        default="elasticsearch",
        description="索引存储模式：elasticsearch / memory",
    )
    elasticsearch_url: str = Field(default="", description="Elasticsearch 基础 URL")
    elasticsearch_user: str = Field(default="", description="basic auth 用户名")
    elasticsearch_password: SecretStr = Field(
        default=SecretStr(""),
        description="basic auth 密码",
    )
    timeout_s: float = Field(default=30, gt=0, description="请求超时（秒）")

    # 索引
    index_prefix: str = Field(default="taskmill", min_length=1, description="任务索引名前缀")
    number_of_shards: int = Field(default=10, ge=1, description="新建索引的分片数")
    number_of_replicas: int = Field(default=1, ge=0, description="新建索引的副本数")
    max_total_fields: int = Field(default=4000, ge=1, description="索引字段数上限")

    # 写入
    index_bulk_size_bytes: int = Field(default=2 * 1024 * 1024, ge=1, description="单个 bulk 的字节预算")
    indexing_workers: int = Field(default=1, ge=1, description="写入协程数")
    num_of_tasks_index_tries: int = Field(default=3, ge=1, description="单文档写入最大尝试次数")
    num_of_merged_tasks_tries: int = Field(default=3, ge=1, description="整批写入最大尝试次数")
    retry_wait_s: float = Field(default=1.0, ge=0, description="整批重试间隔（秒）")

    # 查询
    fetch_by_ids_partitions: int = Field(
        default=10_000,
        ge=1,
        description="按 ID 查询时单个请求携带的 ID 数上限",
    )
    max_search_size: int = Field(
        default=1000,
        ge=1,
        le=10_000,
        description="单页查询结果数（不超过 Elasticsearch 默认 max_result_window）",
    )

    # 生命周期
    max_index_age_days: float = Field(default=7, gt=0, description="索引最长保留天数")
    max_index_size_gb: float = Field(default=100, gt=0, description="索引最大存储（GB）")
    max_index_docs: int = Field(default=1_000_000_000, ge=1, description="索引最大文档数")
    expired_max_indices_to_delete_in_parallel: int = Field(
        default=1,
        ge=1,
        description="并行删除的索引数上限",
    )
    scroll_limitation: int = Field(default=1000, ge=1, description="单次合并修复扫描的文档数上限")
    scroll_timeout_s: float = Field(default=60, gt=0, description="scroll 上下文保持时间（秒）")

    @model_validator(mode="after")
    def _url_required(self) -> "IndexerConfig":
        if self.index_mode == "elasticsearch" and not self.elasticsearch_url:
            raise ValueError("index_mode=elasticsearch 需要设置 TASKMILL_ELASTICSEARCH_URL")
        return self

    @property
    def index_pattern(self) -> str:
        """所有任务索引的通配模式"""
        return f"{self.index_prefix}-*"


_INT_FIELDS = (
    "number_of_shards",
    "number_of_replicas",
    "max_total_fields",
    "index_bulk_size_bytes",
    "indexing_workers",
    "num_of_tasks_index_tries",
    "num_of_merged_tasks_tries",
    "max_index_docs",
    "expired_max_indices_to_delete_in_parallel",
    "scroll_limitation",
    "fetch_by_ids_partitions",
    "max_search_size",
)

_FLOAT_FIELDS = (
    "timeout_s",
    "retry_wait_s",
    "max_index_age_days",
    "max_index_size_gb",
    "scroll_timeout_s",
)


def load_indexer_config() -> IndexerConfig:
    """从环境变量加载 Indexer 配置

    Returns:
        IndexerConfig 实例

    Raises:
        ConfigError: 数值格式错误、取值越界，或 elasticsearch 模式缺少 URL
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKMILL_INDEX_MODE"):
        kwargs["index_mode"] = val
    if val := os.environ.get("TASKMILL_ELASTICSEARCH_URL"):
        kwargs["elasticsearch_url"] = val
    if val := os.environ.get("TASKMILL_ELASTICSEARCH_USER"):
        kwargs["elasticsearch_user"] = val
    if val := os.environ.get("TASKMILL_ELASTICSEARCH_PASSWORD"):
        kwargs["elasticsearch_password"] = SecretStr(val)
    if val := os.environ.get("TASKMILL_INDEX_PREFIX"):
        kwargs["index_prefix"] = val

    for name in _INT_FIELDS:
        value = read_number_env(ENV_PREFIX + name.upper(), int)
        if value is not None:
            kwargs[name] = value

    for name in _FLOAT_FIELDS:
        value = read_number_env(ENV_PREFIX + name.upper(), float)
        if value is not None:
            kwargs[name] = value

    try:
        config = IndexerConfig(**kwargs)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    log.debug(
        "indexer_config_loaded",
        index_mode=config.index_mode,
        elasticsearch_url=config.elasticsearch_url,
        index_prefix=config.index_prefix,
    )
    return config
