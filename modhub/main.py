"""
主应用入口
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from modhub import __version__ as app_version
from modhub.api.admin import router as admin_router
from modhub.config import config
from modhub.core.exceptions import ExceptionHandlers, ModuleException
from modhub.core.logger import logger
from modhub.core.modules import ModuleLoader, build_module_registry
from modhub.database import create_session, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("=" * 60)
    logger.info(f"modhub v{app_version} 启动中...")

    # 记录启动警告（数据库、缓存后端等）
    config.log_startup_warnings()

    # 初始化数据库
    logger.info("初始化数据库...")
    init_db()

    # 注册中心每个进程只构建一次，通过 app.state 注入给路由
    registry = build_module_registry()
    loader = ModuleLoader(registry)
    app.state.module_registry = registry
    app.state.module_loader = loader
    logger.info(f"模块缓存后端: {registry.cache.backend}")

    if config.modules_enabled:
        logger.info("初始化功能模块系统...")
        db = create_session()
        try:
            registry.initialize(db)
            loader.register_all(db, app)
        finally:
            db.close()

        await loader.boot_all()
        logger.info(f"功能模块初始化完成: {len(registry.get_loaded_modules())} 个模块已加载")
    else:
        logger.info("MODULES_ENABLED=false，跳过功能模块加载")

    logger.info(f"服务启动成功: http://{config.host}:{config.port}")
    logger.info("=" * 60)

    yield  # 应用运行期间

    logger.info("正在关闭服务...")

    # 关闭功能模块
    logger.info("关闭功能模块...")
    await loader.shutdown_all()

    # 关闭全局Redis客户端
    from modhub.clients.redis_client import close_redis_client

    close_redis_client()

    logger.info("服务已关闭")


def create_app() -> FastAPI:
    app = FastAPI(
        title="modhub",
        version=app_version,
        lifespan=lifespan,
        docs_url="/docs" if config.docs_enabled else None,
        redoc_url="/redoc" if config.docs_enabled else None,
        openapi_url="/openapi.json" if config.docs_enabled else None,
    )

    # 注册全局异常处理器
    app.add_exception_handler(ModuleException, ExceptionHandlers.handle_module_exception)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, ExceptionHandlers.handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, ExceptionHandlers.handle_generic_exception)  # type: ignore[arg-type]

    # CORS配置 - 使用环境变量配置允许的域名
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials="*" not in config.cors_origins,
            allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(admin_router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": app_version}

    return app


app = create_app()


def main() -> None:
    uvicorn.run(
        "modhub.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
