"""FastAPI 应用主文件

app 创建 + lifespan 管理：加载配置、创建溢出存储与索引存储、启动 Pipeline，
关闭时按顺序停止工作协程并释放连接。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from taskmill.core.config import load_pipeline_config
from taskmill.indexer import load_indexer_config

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import events, health, stats
from .services.pipeline import Pipeline

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时创建 Pipeline，关闭时优雅停止"""
    pipeline_config = load_pipeline_config()
    indexer_config = load_indexer_config()

    pipeline = await Pipeline.open(pipeline_config, indexer_config)
    app.state.pipeline = pipeline
    log.info(
        "server_started",
        index_mode=indexer_config.index_mode,
        overflow_db_path=pipeline_config.overflow_db_path,
    )

    yield

    await pipeline.shutdown()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="taskmill",
        version="0.1.0",
        description="任务事件摄入与索引服务",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    app.include_router(events.router, tags=["events"])
    app.include_router(stats.router, tags=["stats"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
