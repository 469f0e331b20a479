"""
模块运行时加载器

把注册中心给出的已启用模块解析为 ModuleDefinition，注册路由并执行生命周期钩子，
然后把已加载的 key 回报给注册中心。

集成入口解析：
- integration_ref = "package.module:attribute"
- integration_ref = "package.module"（属性名默认为 module）
- 未配置时按约定: <modules_package>.<key>:<Studly>Module

属性可以是 ModuleDefinition 实例，也可以是返回 ModuleDefinition 的无参可调用对象（含类）。
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Dict, List, Optional

from modhub.config import config
from modhub.config.constants import ModuleDefaults
from modhub.core.exceptions import (
    IntegrationNotFoundException,
    ModuleDisabledException,
    ModuleNotFoundException,
    ModuleNotLoadedException,
)
from modhub.core.logger import logger
from modhub.core.modules.base import ModuleConfig, ModuleDefinition, ModuleHealth
from modhub.core.modules.naming import studly_from_key

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.orm import Session

    from modhub.core.modules.registry import ModuleRegistry


class ModuleLoader:
    """模块加载器，每个注册中心实例对应一个"""

    def __init__(self, registry: ModuleRegistry, modules_package: Optional[str] = None) -> None:
        self.registry = registry
        self.modules_package = modules_package or config.modules_package
        self._definitions: Dict[str, ModuleDefinition] = {}
        self._booted: set[str] = set()

    # ========== 解析 ==========

    def conventional_ref(self, key: str) -> str:
        """按约定推导集成入口"""
        module_path = f"{self.modules_package}.{key.replace('-', '_')}"
        return f"{module_path}:{studly_from_key(key)}{ModuleDefaults.ATTRIBUTE_SUFFIX}"

    def resolve(self, key: str, module_config: ModuleConfig) -> Optional[ModuleDefinition]:
        """解析模块的运行时定义，无法解析时返回 None"""
        ref = module_config.integration_ref or self.conventional_ref(key)
        module_path, _, attribute = ref.partition(":")
        attribute = attribute or ModuleDefaults.ATTRIBUTE

        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.warning(f"Module [{key}] integration import failed ({ref}): {e}")
            return None

        target = getattr(module, attribute, None)
        if target is None:
            logger.warning(f"Module [{key}] integration attribute not found: {ref}")
            return None

        definition = target if isinstance(target, ModuleDefinition) else None
        if definition is None and callable(target):
            definition = target()

        if not isinstance(definition, ModuleDefinition):
            logger.warning(f"Module [{key}] integration is not a ModuleDefinition: {ref}")
            return None
        return definition

    def _attach(self, key: str, definition: ModuleDefinition, app: Optional[FastAPI]) -> None:
        if app is not None and definition.router_factory:
            app.include_router(definition.router_factory())
            prefix = definition.api_prefix or "(default)"
            logger.info(f"模块 [{key}] 路由已注册: {prefix}")

        self._definitions[key] = definition
        self.registry.mark_loaded(key)

    # ========== 注册 ==========

    def register_all(self, db: Session, app: Optional[FastAPI] = None) -> List[str]:
        """
        注册全部已启用且自动注册的模块

        单个模块失败只记录日志，不影响其余模块

        Returns:
            本次新注册的模块 key
        """
        registered = []
        for key, module_config in self.registry.get_enabled_modules(db).items():
            if key in self._definitions:
                continue
            try:
                definition = self.resolve(key, module_config)
                if definition is None:
                    logger.warning(f"Integration not found or undefined for module: {key}")
                    continue
                self._attach(key, definition, app)
            except Exception as e:
                logger.error(f"Failed to register module {key}: {e}")
                continue
            registered.append(key)

        logger.info(f"模块注册完成: {len(registered)} 个模块已加载")
        return registered

    def register(self, db: Session, key: str, app: Optional[FastAPI] = None) -> ModuleDefinition:
        """注册单个模块"""
        module_config = self.registry.get_module_config(db, key)
        if module_config is None:
            raise ModuleNotFoundException(key)
        if not module_config.enabled:
            raise ModuleDisabledException(key)

        definition = self.resolve(key, module_config)
        if definition is None:
            raise IntegrationNotFoundException(key, module_config.integration_ref)

        self._attach(key, definition, app)
        return definition

    # ========== 生命周期 ==========

    async def boot_all(self) -> None:
        """执行全部已加载模块的启动钩子（每个模块只执行一次）"""
        for key, definition in list(self._definitions.items()):
            if key in self._booted:
                continue
            try:
                if definition.on_startup:
                    await definition.on_startup()
            except Exception as e:
                logger.error(f"Failed to boot module {key}: {e}")
                continue
            self._booted.add(key)

    async def boot(self, key: str) -> None:
        """执行单个已加载模块的启动钩子"""
        definition = self._definitions.get(key)
        if definition is None:
            raise ModuleNotLoadedException(key)

        if definition.on_startup:
            await definition.on_startup()
        self._booted.add(key)

    async def shutdown_all(self) -> None:
        """按加载的逆序执行关闭钩子，并通知注册中心卸载"""
        for key, definition in reversed(list(self._definitions.items())):
            try:
                if key in self._booted and definition.on_shutdown:
                    await definition.on_shutdown()
            except Exception as e:
                logger.warning(f"Module [{key}] shutdown failed: {e}")
            self.registry.mark_unloaded(key)

        self._definitions.clear()
        self._booted.clear()

    async def check_health(self, key: str) -> ModuleHealth:
        """执行模块健康检查，未加载或无检查函数时返回 UNKNOWN"""
        definition = self._definitions.get(key)
        if definition is None or not definition.health_check:
            return ModuleHealth.UNKNOWN

        try:
            return await definition.health_check()
        except Exception as e:
            logger.warning(f"Module [{key}] health check failed: {e}")
            return ModuleHealth.UNHEALTHY

    def get_definition(self, key: str) -> Optional[ModuleDefinition]:
        return self._definitions.get(key)
