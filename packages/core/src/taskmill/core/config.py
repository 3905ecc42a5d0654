"""PipelineConfig -- 摄入管道配置加载

从环境变量加载配置（前缀 TASKMILL_），构造一次后不可变，
显式传递给各组件。数值格式错误属于启动期配置错误，直接失败。
"""

import json
import os
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

log = structlog.get_logger()

ENV_PREFIX = "TASKMILL_"


class ConfigError(ValueError):
    """启动期配置错误（唯一会中止启动的错误类型）"""


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKMILL_DATA_DIR", "data"))


def get_overflow_db_path() -> str:
    """获取溢出存储 SQLite 数据库路径"""
    return os.environ.get(
        "TASKMILL_OVERFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "overflow.db"),
    )


class PipelineConfig(BaseModel):
    """摄入管道配置 -- 队列、缓存、溢出恢复、周期任务、关闭超时"""

    model_config = ConfigDict(frozen=True)

    # 队列
    events_queue_capacity: int = Field(default=100_000, ge=1, description="事件队列容量")
    overflow_queue_capacity: int = Field(default=100_000, ge=1, description="溢出队列容量")
    max_items_per_cycle: int = Field(default=10_000, ge=1, description="单次排空最大事件数")
    drain_timeout_s: float = Field(default=1.0, gt=0, description="排空时等待首个事件的超时（秒）")

    # 任务缓存
    max_cache_size: int = Field(default=10_000, ge=1, description="缓存任务数上限")
    max_cache_weight: int = Field(default=100_000_000, ge=1, description="缓存权重上限（近似字节）")
    max_cache_hold_time_s: float = Field(default=3600, gt=0, description="任务最长缓存时间（秒）")
    max_orphans: int = Field(default=100_000, ge=1, description="孤儿事件缓存上限")
    max_orphan_hold_time_s: float = Field(default=3600, gt=0, description="孤儿事件最长保留时间（秒）")

    # 属性截断
    default_max_chars: int = Field(default=1_000_000, ge=1, description="属性值默认最大字符数")
    properties_length_map: dict[str, int] = Field(
        default_factory=dict,
        description="按属性 key 覆盖的最大字符数",
    )

    # 溢出与恢复
    overflow_db_path: str = Field(default_factory=get_overflow_db_path, description="溢出存储路径")
    min_lifetime_s: float = Field(default=600, ge=0, description="溢出记录最短存活时间（秒）")
    max_fetched_bulks: int = Field(default=10, ge=1, description="单次恢复的最大 bulk 数")
    max_fetched_events: int = Field(default=10, ge=1, description="单次恢复的最大事件数")
    spill_max_tries: int = Field(default=3, ge=1, description="溢出写入最大尝试次数")
    retry_backoff_s: float = Field(default=0.5, ge=0, description="溢出写入重试退避基数（秒）")
    persistence_ttl_s: float = Field(
        default=86_400,
        gt=0,
        description="溢出记录 TTL（秒），超时未消费的记录被清理",
    )

    # 周期任务
    bulk_fetch_period_s: float = Field(default=600, gt=0, description="bulk 恢复周期（秒）")
    events_fetch_period_s: float = Field(default=300, gt=0, description="事件恢复周期（秒）")
    merging_period_s: float = Field(default=600, gt=0, description="合并修复周期（秒）")
    deletion_period_s: float = Field(default=86_400, gt=0, description="过期索引删除周期（秒）")

    # 关闭
    termination_timeout_s: float = Field(default=60, gt=0, description="优雅关闭超时（秒）")

    @model_validator(mode="after")
    def _ttl_after_min_lifetime(self) -> "PipelineConfig":
        if self.persistence_ttl_s <= self.min_lifetime_s:
            raise ValueError("persistence_ttl_s 必须大于 min_lifetime_s，否则记录在可恢复前就过期")
        return self


_INT_FIELDS = (
    "events_queue_capacity",
    "overflow_queue_capacity",
    "max_items_per_cycle",
    "max_cache_size",
    "max_cache_weight",
    "max_orphans",
    "default_max_chars",
    "max_fetched_bulks",
    "max_fetched_events",
    "spill_max_tries",
)

_FLOAT_FIELDS = (
    "drain_timeout_s",
    "max_cache_hold_time_s",
    "max_orphan_hold_time_s",
    "min_lifetime_s",
    "retry_backoff_s",
    "persistence_ttl_s",
    "bulk_fetch_period_s",
    "events_fetch_period_s",
    "merging_period_s",
    "deletion_period_s",
    "termination_timeout_s",
)


def read_number_env(name: str, cast: type) -> int | float | None:
    """读取数值型环境变量，格式错误抛 ConfigError"""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"环境变量 {name} 不是合法的数值: {raw!r}") from e


def load_pipeline_config() -> PipelineConfig:
    """从环境变量加载管道配置

    环境变量名为 TASKMILL_ + 字段名大写，例如
    TASKMILL_EVENTS_QUEUE_CAPACITY -> events_queue_capacity。
    TASKMILL_PROPERTIES_LENGTH_MAP 为 JSON 对象。

    Returns:
        PipelineConfig 实例

    Raises:
        ConfigError: 环境变量格式错误或取值越界
    """
    kwargs: dict = {}

    for name in _INT_FIELDS:
        value = read_number_env(ENV_PREFIX + name.upper(), int)
        if value is not None:
            kwargs[name] = value

    for name in _FLOAT_FIELDS:
        value = read_number_env(ENV_PREFIX + name.upper(), float)
        if value is not None:
            kwargs[name] = value

    if val := os.environ.get("TASKMILL_PROPERTIES_LENGTH_MAP"):
        try:
            length_map = json.loads(val)
        except json.JSONDecodeError as e:
            raise ConfigError("TASKMILL_PROPERTIES_LENGTH_MAP 不是合法的 JSON") from e
        if not isinstance(length_map, dict):
            raise ConfigError("TASKMILL_PROPERTIES_LENGTH_MAP 必须是 JSON 对象")
        kwargs["properties_length_map"] = length_map

    try:
        config = PipelineConfig(**kwargs)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    log.debug("pipeline_config_loaded", overflow_db_path=config.overflow_db_path)
    return config
