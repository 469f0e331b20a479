"""Admin API routers."""

from fastapi import APIRouter

from .modules import router as modules_router

router = APIRouter()
router.include_router(modules_router)

# 注意：各功能模块自己的路由由 ModuleLoader 在启动时按启用状态动态注册

__all__ = ["router"]
