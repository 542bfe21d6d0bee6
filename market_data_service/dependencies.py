"""FastAPI 依赖：从应用状态中取出启动时装配的服务容器"""

from fastapi import Request

from market_data_service.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
