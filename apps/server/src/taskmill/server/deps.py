"""依赖注入模块 -- 通过 FastAPI Depends 注入 Pipeline 实例

Pipeline 通过 app.state 管理，在 lifespan 中创建/关闭。
"""

from fastapi import Request

from .services.pipeline import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    """从 app.state 获取 Pipeline 实例"""
    return request.app.state.pipeline
