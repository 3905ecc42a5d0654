"""IndexerConfig + load_indexer_config 单元测试"""

import pytest
from pydantic import SecretStr, ValidationError
from taskmill.core.config import ConfigError
from taskmill.indexer import IndexerConfig, create_index_store, load_indexer_config
from taskmill.indexer.client import HttpIndexStore
from taskmill.indexer.memory_store import MemoryIndexStore

_ENV_VARS = (
    "TASKMILL_INDEX_MODE",
    "TASKMILL_ELASTICSEARCH_URL",
    "TASKMILL_ELASTICSEARCH_USER",
    "TASKMILL_ELASTICSEARCH_PASSWORD",
    "TASKMILL_INDEX_PREFIX",
    "TASKMILL_INDEXING_WORKERS",
    "TASKMILL_FETCH_BY_IDS_PARTITIONS",
    "TASKMILL_MAX_SEARCH_SIZE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestIndexerConfig:
    """IndexerConfig 数据模型测试"""

    def test_default_values(self):
        config = IndexerConfig(elasticsearch_url="http://es:9200")
        assert config.index_mode == "elasticsearch"
        assert config.index_prefix == "taskmill"
        assert config.index_pattern == "taskmill-*"
        assert config.number_of_shards == 10
        assert config.index_bulk_size_bytes == 2 * 1024 * 1024
        assert config.num_of_merged_tasks_tries == 3
        assert config.max_index_docs == 1_000_000_000
        assert config.fetch_by_ids_partitions == 10_000
        assert config.max_search_size == 1000

    def test_elasticsearch_mode_requires_url_at_construction(self):
        with pytest.raises(ValidationError, match="TASKMILL_ELASTICSEARCH_URL"):
            IndexerConfig()

    def test_memory_mode_needs_no_url(self):
        assert IndexerConfig(index_mode="memory").elasticsearch_url == ""

    def test_search_size_capped_by_result_window(self):
        with pytest.raises(ValidationError):
            IndexerConfig(index_mode="memory", max_search_size=20_000)

    def test_workers_min_value(self):
        with pytest.raises(ValidationError):
            IndexerConfig(indexing_workers=0)


class TestLoadIndexerConfig:
    """load_indexer_config() 环境变量映射测试"""

    def test_elasticsearch_requires_url(self):
        with pytest.raises(ConfigError, match="TASKMILL_ELASTICSEARCH_URL"):
            load_indexer_config()

    def test_memory_mode_without_url(self, monkeypatch):
        monkeypatch.setenv("TASKMILL_INDEX_MODE", "memory")
        config = load_indexer_config()
        assert config.index_mode == "memory"
        assert isinstance(create_index_store(config), MemoryIndexStore)

    def test_elasticsearch_env(self, monkeypatch):
        monkeypatch.setenv("TASKMILL_ELASTICSEARCH_URL", "http://es:9200")
        monkeypatch.setenv("TASKMILL_ELASTICSEARCH_PASSWORD", "pw")
        monkeypatch.setenv("TASKMILL_INDEXING_WORKERS", "4")

        config = load_indexer_config()
        assert config.elasticsearch_url == "http://es:9200"
        assert config.elasticsearch_password == SecretStr("pw")
        assert config.indexing_workers == 4
        assert isinstance(create_index_store(config), HttpIndexStore)

    def test_invalid_mode(self, monkeypatch):
        monkeypatch.setenv("TASKMILL_INDEX_MODE", "solr")
        with pytest.raises(ConfigError):
            load_indexer_config()

    def test_non_numeric_workers(self, monkeypatch):
        monkeypatch.setenv("TASKMILL_INDEX_MODE", "memory")
        monkeypatch.setenv("TASKMILL_INDEXING_WORKERS", "two")
        with pytest.raises(ConfigError):
            load_indexer_config()

    def test_query_partition_env(self, monkeypatch):
        monkeypatch.setenv("TASKMILL_INDEX_MODE", "memory")
        monkeypatch.setenv("TASKMILL_FETCH_BY_IDS_PARTITIONS", "500")
        monkeypatch.setenv("TASKMILL_MAX_SEARCH_SIZE", "200")

        config = load_indexer_config()
        assert config.fetch_by_ids_partitions == 500
        assert config.max_search_size == 200
