"""
日记应用主入口
启动FastAPI应用，提供认证、日记、资料与账号管理接口
"""

from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from diary_app.api.dependencies import AppContainer, build_container
from diary_app.api.routes import router
from diary_app.utils.config import settings
from diary_app.utils.errors import DiaryError
from diary_app.utils.logger import logger


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """
    创建FastAPI应用

    Args:
        container: 服务实例，默认按配置创建

    Returns:
        FastAPI应用
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug
    )
    app.state.container = container
    app.include_router(router)

    @app.exception_handler(DiaryError)
    async def diary_error_handler(request: Request, exc: DiaryError) -> JSONResponse:
        """业务异常统一转换为失败响应"""
        logger.warning(f"请求失败: {request.method} {request.url.path} - {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": 1, "msg": exc.message}
        )

    @app.on_event("startup")
    async def startup_event():
        """应用启动时执行"""
        if app.state.container is None:
            app.state.container = build_container()
        await app.state.container.start()
        logger.info(f"{settings.app_name} v{settings.app_version} 启动成功")

    @app.on_event("shutdown")
    async def shutdown_event():
        """应用关闭时执行"""
        await app.state.container.close()
        logger.info(f"{settings.app_name} 已关闭")

    @app.get("/")
    async def root():
        """根路径，返回应用信息"""
        return {
            "app_name": settings.app_name,
            "version": settings.app_version,
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        """健康检查接口"""
        return {"status": "healthy", "code": 0}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"启动服务器: {settings.host}:{settings.port}")
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
