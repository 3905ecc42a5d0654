"""CLI 入口模块 -- python -m taskmill.server

环境变量:
  TASKMILL_HOST  监听地址（默认 127.0.0.1）
  TASKMILL_PORT  监听端口（默认 8000）
"""

import os

import uvicorn
from taskmill.core.config import ConfigError, read_number_env


def main() -> None:
    """启动 uvicorn"""
    host = os.environ.get("TASKMILL_HOST", "127.0.0.1")
    try:
        port = read_number_env("TASKMILL_PORT", int) or 8000
    except ConfigError as e:
        raise SystemExit(str(e)) from e
    uvicorn.run("taskmill.server.main:app", host=host, port=int(port), log_config=None)


if __name__ == "__main__":
    main()
