"""
模块化系统核心

提供数据库驱动的功能模块管理，支持：
- 启用 / 禁用 / 安装 / 卸载，核心模块保护与依赖校验
- 声明式基线同步（只覆盖、不删除）
- 已启用模块读缓存，写操作后立即失效
- 运行时加载器按约定解析集成入口
"""

from modhub.core.modules.base import (
    ModuleConfig,
    ModuleDefinition,
    ModuleDescriptor,
    ModuleHealth,
    ModuleStatistics,
    ModuleStatus,
    SyncResult,
)
from modhub.core.modules.loader import ModuleLoader
from modhub.core.modules.naming import display_name_from_key, studly_from_key
from modhub.core.modules.registry import ModuleRegistry, build_module_registry

__all__ = [
    "ModuleConfig",
    "ModuleDefinition",
    "ModuleDescriptor",
    "ModuleHealth",
    "ModuleStatistics",
    "ModuleStatus",
    "SyncResult",
    "ModuleLoader",
    "ModuleRegistry",
    "build_module_registry",
    "display_name_from_key",
    "studly_from_key",
]
