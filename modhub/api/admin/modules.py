"""模块管理 API 端点"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from modhub.core.modules import (
    ModuleDescriptor,
    ModuleHealth,
    ModuleLoader,
    ModuleRegistry,
    ModuleStatus,
)
from modhub.database import get_db

router = APIRouter(prefix="/api/admin/modules", tags=["Admin - Modules"])


def get_module_registry(request: Request) -> ModuleRegistry:
    """FastAPI 依赖：进程级注册中心实例（启动时挂在 app.state 上）"""
    return request.app.state.module_registry


def get_module_loader(request: Request) -> Optional[ModuleLoader]:
    return getattr(request.app.state, "module_loader", None)


# ========== Response Models ==========


class ModuleStatusResponse(BaseModel):
    """模块状态响应"""

    id: int
    key: str
    name: str
    description: Optional[str]
    enabled: bool
    auto_register: bool
    integration_ref: Optional[str]
    settings: Dict[str, Any]
    dependencies: List[str]
    version: Optional[str]
    author: Optional[str]
    changelog: Optional[str]
    is_core: bool
    sort_order: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    loaded: bool
    can_be_disabled: bool
    has_unmet_dependencies: bool
    unmet_dependencies: List[str]

    @classmethod
    def from_status(cls, status: ModuleStatus) -> "ModuleStatusResponse":
        return cls(**status.to_dict())


class ModuleStatisticsResponse(BaseModel):
    """模块统计响应"""

    total: int
    enabled: int
    disabled: int
    core: int
    custom: int
    loaded: int
    enabled_percentage: float


class ModuleActionResponse(BaseModel):
    """启用 / 禁用结果"""

    key: str
    enabled: bool
    changed: bool


class SyncResponse(BaseModel):
    """同步结果"""

    created: List[str]
    updated: List[str]
    failed: List[str]
    skipped: bool


# ========== API Endpoints ==========


@router.get("", response_model=List[ModuleStatusResponse])
async def list_modules(
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """
    获取所有模块状态

    按 sort_order、key 排序，依赖满足情况实时计算。
    """
    return [ModuleStatusResponse.from_status(status) for status in registry.get_status(db)]


@router.get("/statistics", response_model=ModuleStatisticsResponse)
async def get_statistics(
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """获取模块统计（实时计算）"""
    return ModuleStatisticsResponse(**registry.get_statistics(db).to_dict())


@router.get("/{module_key}", response_model=ModuleStatusResponse)
async def get_module(
    module_key: str,
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """
    获取单个模块状态

    **路径参数**:
    - `module_key`: 模块 key
    """
    return ModuleStatusResponse.from_status(registry.get_module_status(db, module_key))


@router.get("/{module_key}/health")
async def get_module_health(
    module_key: str,
    loader: Optional[ModuleLoader] = Depends(get_module_loader),
):
    """执行已加载模块的健康检查，未加载时返回 unknown"""
    health = await loader.check_health(module_key) if loader else ModuleHealth.UNKNOWN
    return {"key": module_key, "health": health.value}


@router.post("/{module_key}/enable", response_model=ModuleActionResponse)
async def enable_module(
    module_key: str,
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """
    启用模块

    核心模块返回 403；存在未启用的依赖时返回 409，`keys` 为全部阻塞的依赖。
    """
    changed = registry.enable(db, module_key)
    return ModuleActionResponse(key=module_key, enabled=True, changed=changed)


@router.post("/{module_key}/disable", response_model=ModuleActionResponse)
async def disable_module(
    module_key: str,
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """
    禁用模块

    核心模块返回 403；仍有已启用模块依赖它时返回 409，`keys` 为全部依赖方。
    """
    changed = registry.disable(db, module_key)
    return ModuleActionResponse(key=module_key, enabled=False, changed=changed)


@router.patch("/{module_key}/settings")
async def update_module_settings(
    module_key: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """
    合并更新模块配置

    **请求体**: JSON 对象，同名键覆盖，其余键保留
    """
    settings = registry.update_settings(db, module_key, payload)
    return {"key": module_key, "settings": settings}


@router.post("", status_code=201)
async def install_module(
    descriptor: ModuleDescriptor,
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """安装新模块，key 已存在时返回 409"""
    return registry.install(db, descriptor).to_dict()


@router.delete("/{module_key}", status_code=204)
async def uninstall_module(
    module_key: str,
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """永久卸载模块"""
    registry.uninstall(db, module_key)


@router.post("/sync", response_model=SyncResponse)
async def sync_modules(
    db: Session = Depends(get_db),
    registry: ModuleRegistry = Depends(get_module_registry),
):
    """将声明式模块基线重新同步到数据库"""
    from modhub.core.modules.declarations import load_declared_modules

    result = registry.sync(db, load_declared_modules())
    return SyncResponse(
        created=result.created,
        updated=result.updated,
        failed=result.failed,
        skipped=result.skipped,
    )


@router.post("/cache/clear")
async def clear_cache(registry: ModuleRegistry = Depends(get_module_registry)):
    """清空模块缓存"""
    registry.clear_all_cache()
    return {"message": "Module caches cleared"}
