"""Indexer 异常体系"""


class IndexStoreError(Exception):
    """索引存储基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class IndexStoreUnreachableError(IndexStoreError):
    """索引存储不可达（连接失败、超时、DNS 解析失败等）

    此异常触发整批重试，重试耗尽后整批溢出到持久化存储。
    """

    def __init__(self, url: str, original_error: Exception) -> None:
        """
        Args:
            url: 尝试连接的地址
            original_error: 原始异常
        """
        super().__init__(
            f"索引存储不可达: {url} -- {original_error}",
            recoverable=True,
        )
        self.url = url
        self.original_error = original_error
