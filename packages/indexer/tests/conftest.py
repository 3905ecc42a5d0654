"""packages/indexer 测试配置"""

import pytest
from taskmill.indexer import IndexerConfig


@pytest.fixture
def es_config() -> IndexerConfig:
    return IndexerConfig(
        index_mode="elasticsearch",
        elasticsearch_url="http://es.test:9200",
        elasticsearch_user="elastic",
        elasticsearch_password="secret",
        index_prefix="tm",
    )
