"""
模块注册中心

负责模块记录的生命周期控制、依赖校验、声明式同步和读缓存维护
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from modhub.config import config
from modhub.config.constants import CacheKeys
from modhub.core.cache_service import CacheService
from modhub.core.exceptions import (
    CoreModuleImmutableException,
    DuplicateModuleException,
    HasDependentsException,
    InvalidSettingsPayloadException,
    ModuleNotFoundException,
    OperationNotAllowedException,
    UnmetDependenciesException,
)
from modhub.core.logger import logger
from modhub.core.modules.base import (
    ModuleConfig,
    ModuleDescriptor,
    ModuleStatistics,
    ModuleStatus,
    SyncResult,
)
from modhub.database import is_table_present
from modhub.models.database import ModuleSetting
from modhub.services.module.store import ModuleStore

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

DescriptorInput = Union[ModuleDescriptor, Mapping[str, Any]]


class ModuleRegistry:
    """
    模块注册中心

    职责：
    - 启用 / 禁用 / 安装 / 卸载 / 合并配置，并校验核心模块与依赖约束
    - 将声明式模块列表同步到数据库（只覆盖、不删除）
    - 维护已启用模块 / 单模块配置的读缓存，任何写操作后立即失效
    - 记录 Runtime Loader 回报的已加载模块

    每个进程构建一个实例并注入给调用方；数据库会话由调用方按请求 / 命令传入。

    并发：写操作在调用方会话的单个事务内完成。目标记录使用 FOR UPDATE 加锁，
    启用时依赖记录使用 FOR SHARE 加锁，因此并发的 enable(A) / disable(A 的依赖)
    会在依赖记录上串行化（SQLite 不支持行锁，此时退化为数据库级写锁）。

    依赖校验只检查直接依赖是否启用，不做传递闭包校验。
    """

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        cache_ttl: Optional[int] = None,
        allow_install: Optional[bool] = None,
        allow_uninstall: Optional[bool] = None,
        auto_sync: Optional[bool] = None,
    ) -> None:
        self.cache = cache if cache is not None else CacheService.from_config()
        self.cache_ttl = cache_ttl if cache_ttl is not None else config.module_cache_ttl
        self.allow_install = config.module_allow_install if allow_install is None else allow_install
        self.allow_uninstall = (
            config.module_allow_uninstall if allow_uninstall is None else allow_uninstall
        )
        self.auto_sync = config.module_auto_sync_config if auto_sync is None else auto_sync

        self._loaded: set[str] = set()
        self._initialized = False
        self._lock = threading.RLock()

    # ========== 内部工具 ==========

    @contextmanager
    def _transaction(self, db: Session) -> Iterator[ModuleStore]:
        """在调用方会话上执行一次完整事务，任何异常都回滚"""
        try:
            yield ModuleStore(db)
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def _require(store: ModuleStore, key: str) -> ModuleSetting:
        record = store.find(key, for_update=True)
        if record is None:
            raise ModuleNotFoundException(key)
        return record

    @staticmethod
    def _unmet_dependencies(store: ModuleStore, record: ModuleSetting) -> List[str]:
        """按声明顺序返回不存在或未启用的直接依赖"""
        dependencies = list(record.dependencies or [])
        found = store.find_many(dependencies, shared_lock=True)
        return [dep for dep in dependencies if dep not in found or not found[dep].enabled]

    def _all_enabled_key(self) -> str:
        return self.cache.key(CacheKeys.ALL_ENABLED)

    def _config_key(self, key: str) -> str:
        return self.cache.key(CacheKeys.MODULE_CONFIG, key)

    def _invalidate(self, key: str) -> None:
        self.cache.invalidate(self._all_enabled_key())
        self.cache.invalidate(self._config_key(key))

    @staticmethod
    def _coerce_descriptor(data: DescriptorInput) -> ModuleDescriptor:
        if isinstance(data, ModuleDescriptor):
            return data
        try:
            return ModuleDescriptor.model_validate(dict(data))
        except (ValidationError, TypeError, ValueError) as e:
            raise InvalidSettingsPayloadException(f"Invalid module descriptor: {e}") from e

    # ========== 启用 / 禁用 ==========

    def enable(self, db: Session, key: str) -> bool:
        """
        启用模块

        Returns:
            True 表示状态已改变，False 表示模块本来就已启用（幂等成功）

        Raises:
            ModuleNotFoundException / CoreModuleImmutableException / UnmetDependenciesException
        """
        with self._transaction(db) as store:
            record = self._require(store, key)
            if record.is_core:
                raise CoreModuleImmutableException(key, "enabled or disabled")

            unmet = self._unmet_dependencies(store, record)
            if unmet:
                raise UnmetDependenciesException(key, unmet)

            if record.enabled:
                logger.debug("Module [{}] already enabled", key)
                return False

            record.enabled = True

        self._invalidate(key)
        logger.info(f"Module [{key}] enabled")
        return True

    def disable(self, db: Session, key: str) -> bool:
        """
        禁用模块

        Returns:
            True 表示状态已改变，False 表示模块本来就已禁用（幂等成功）

        Raises:
            ModuleNotFoundException / CoreModuleImmutableException / HasDependentsException
        """
        with self._transaction(db) as store:
            record = self._require(store, key)
            if record.is_core:
                raise CoreModuleImmutableException(key, "enabled or disabled")

            dependents = store.enabled_dependents(key)
            if dependents:
                raise HasDependentsException(key, dependents, action="disable")

            if not record.enabled:
                logger.debug("Module [{}] already disabled", key)
                return False

            record.enabled = False

        self._invalidate(key)
        logger.info(f"Module [{key}] disabled")
        return True

    # ========== 配置 ==========

    def update_settings(self, db: Session, key: str, partial: Any) -> Dict[str, Any]:
        """
        浅合并模块配置：partial 中的键覆盖同名键，其余键保留

        Returns:
            合并后的完整配置
        """
        if not isinstance(partial, Mapping):
            raise InvalidSettingsPayloadException(
                f"Settings for module '{key}' must be an object, got {type(partial).__name__}",
                key=key,
            )
        try:
            json.dumps(dict(partial))
        except (TypeError, ValueError) as e:
            raise InvalidSettingsPayloadException(
                f"Settings for module '{key}' are not JSON serializable: {e}", key=key
            ) from e

        with self._transaction(db) as store:
            record = self._require(store, key)
            merged = {**(record.settings or {}), **partial}
            record.settings = merged

        self._invalidate(key)
        logger.info(f"Module [{key}] settings updated: {sorted(partial.keys())}")
        return merged

    # ========== 安装 / 卸载 ==========

    def install(self, db: Session, data: DescriptorInput) -> ModuleConfig:
        """
        安装新模块

        声明为 enabled 的模块同样要求直接依赖已启用

        Raises:
            OperationNotAllowedException / InvalidSettingsPayloadException /
            DuplicateModuleException / UnmetDependenciesException
        """
        if not self.allow_install:
            raise OperationNotAllowedException("Module installation is disabled")

        descriptor = self._coerce_descriptor(data)
        key = descriptor.key

        try:
            with self._transaction(db) as store:
                if store.find(key) is not None:
                    raise DuplicateModuleException(key)

                record = ModuleSetting(key=key, **descriptor.to_fields())
                if record.enabled:
                    unmet = self._unmet_dependencies(store, record)
                    if unmet:
                        raise UnmetDependenciesException(key, unmet)

                db.add(record)
                db.flush()
                result = ModuleConfig.from_record(record)
        except IntegrityError as e:
            # 并发安装同一 key 时由唯一约束兜底
            raise DuplicateModuleException(key) from e

        self._invalidate(key)
        logger.info(f"Module [{key}] installed (version={descriptor.version})")
        return result

    def uninstall(self, db: Session, key: str) -> None:
        """
        永久删除模块记录

        Raises:
            OperationNotAllowedException / ModuleNotFoundException /
            CoreModuleImmutableException / HasDependentsException
        """
        if not self.allow_uninstall:
            raise OperationNotAllowedException("Module uninstallation is disabled", key=key)

        with self._transaction(db) as store:
            record = self._require(store, key)
            if record.is_core:
                raise CoreModuleImmutableException(key, "uninstalled")

            dependents = store.enabled_dependents(key)
            if dependents:
                raise HasDependentsException(key, dependents, action="uninstall")

            store.delete(record)

        self._invalidate(key)
        logger.info(f"Module [{key}] uninstalled")

    # ========== 声明式同步 ==========

    def sync(self, db: Session, declared: Sequence[DescriptorInput]) -> SyncResult:
        """
        将声明式模块列表同步到数据库

        - 已存在的 key：除 key 外的字段全部被声明值覆盖
        - 不存在的 key：创建
        - 数据库中有但声明中没有的记录保持不变（删除只能通过 uninstall）

        存储不可用（未迁移 / 连接失败）时整体跳过；单条记录失败只记录日志，不影响其余记录。
        """
        result = SyncResult()

        if not is_table_present(db, ModuleSetting.__tablename__):
            logger.warning("module_settings 表不可用，跳过模块同步")
            result.skipped = True
            return result

        for item in declared:
            try:
                descriptor = self._coerce_descriptor(item)
            except InvalidSettingsPayloadException as e:
                key = item.get("key", "?") if isinstance(item, Mapping) else "?"
                logger.error(f"Module [{key}] sync skipped: {e.message}")
                result.failed.append(str(key))
                continue

            fields = descriptor.to_fields()
            if "changelog" not in descriptor.model_fields_set:
                fields.pop("changelog")

            try:
                with self._transaction(db) as store:
                    _, created = store.upsert(descriptor.key, fields)
            except SQLAlchemyError as e:
                logger.error(f"Module [{descriptor.key}] sync failed: {e}")
                result.failed.append(descriptor.key)
                continue

            (result.created if created else result.updated).append(descriptor.key)

        self.cache.invalidate_all()
        logger.info(
            f"模块同步完成: 新建 {len(result.created)}, 更新 {len(result.updated)}, "
            f"失败 {len(result.failed)}"
        )
        return result

    def initialize(self, db: Session, declared: Optional[Sequence[DescriptorInput]] = None) -> None:
        """
        进程启动时执行一次声明式同步

        Args:
            declared: 声明列表，缺省时读取内置声明 + MODULES_CONFIG_FILE
        """
        with self._lock:
            if self._initialized:
                return

            if self.auto_sync:
                if declared is None:
                    from modhub.core.modules.declarations import load_declared_modules

                    declared = load_declared_modules()
                self.sync(db, declared)

            self._initialized = True

    @property
    def initialized(self) -> bool:
        return self._initialized

    def clear_all_cache(self) -> None:
        """清空全部模块缓存"""
        self.cache.invalidate_all()
        logger.info("模块缓存已清空")

    # ========== 查询 ==========

    def get_enabled_modules(self, db: Session) -> Dict[str, ModuleConfig]:
        """获取已启用且自动注册的模块（按 sort_order、key 排序，带缓存）"""

        def compute() -> Dict[str, Dict[str, Any]]:
            store = ModuleStore(db)
            records = store.list(
                ModuleSetting.enabled.is_(True), ModuleSetting.auto_register.is_(True)
            )
            return {record.key: ModuleConfig.from_record(record).to_dict() for record in records}

        cached = self.cache.get_or_compute(self._all_enabled_key(), self.cache_ttl, compute)
        return {key: ModuleConfig.from_dict(data) for key, data in cached.items()}

    def get_module_config(self, db: Session, key: str) -> Optional[ModuleConfig]:
        """获取单个模块配置（带缓存），不存在时返回 None"""

        def compute() -> Optional[Dict[str, Any]]:
            record = ModuleStore(db).find(key)
            return ModuleConfig.from_record(record).to_dict() if record else None

        cached = self.cache.get_or_compute(self._config_key(key), self.cache_ttl, compute)
        return ModuleConfig.from_dict(cached) if cached else None

    def is_module_enabled(self, db: Session, key: str) -> bool:
        module_config = self.get_module_config(db, key)
        return module_config.enabled if module_config else False

    def get_module_dependencies(self, db: Session, key: str) -> List[str]:
        module_config = self.get_module_config(db, key)
        return module_config.dependencies if module_config else []

    def get_dependent_modules(self, db: Session, key: str) -> List[str]:
        """获取依赖该模块且已启用的模块 key"""
        return ModuleStore(db).enabled_dependents(key)

    def get_status(self, db: Session) -> List[ModuleStatus]:
        """
        获取全部模块状态（按 sort_order、key 排序）

        loaded / 依赖满足情况在调用时实时计算，不走缓存
        """
        records = ModuleStore(db).list()
        enabled_keys = {record.key for record in records if record.enabled}

        result = []
        for record in records:
            unmet = [dep for dep in (record.dependencies or []) if dep not in enabled_keys]
            result.append(
                ModuleStatus(
                    id=record.id,
                    key=record.key,
                    name=record.name,
                    description=record.description,
                    enabled=bool(record.enabled),
                    auto_register=bool(record.auto_register),
                    integration_ref=record.integration_ref,
                    settings=dict(record.settings or {}),
                    dependencies=list(record.dependencies or []),
                    version=record.version,
                    author=record.author,
                    changelog=record.changelog,
                    is_core=bool(record.is_core),
                    sort_order=record.sort_order,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                    loaded=self.is_module_loaded(record.key),
                    can_be_disabled=not record.is_core,
                    has_unmet_dependencies=bool(unmet),
                    unmet_dependencies=unmet,
                )
            )
        return result

    def get_module_status(self, db: Session, key: str) -> ModuleStatus:
        """获取单个模块状态"""
        for status in self.get_status(db):
            if status.key == key:
                return status
        raise ModuleNotFoundException(key)

    def get_statistics(self, db: Session) -> ModuleStatistics:
        """模块统计（实时计算，不走缓存）"""
        store = ModuleStore(db)
        total = store.count()
        enabled = store.count(ModuleSetting.enabled.is_(True))
        core = store.count(ModuleSetting.is_core.is_(True))

        return ModuleStatistics(
            total=total,
            enabled=enabled,
            disabled=total - enabled,
            core=core,
            custom=total - core,
            loaded=len(self.get_loaded_modules()),
            enabled_percentage=round(enabled / total * 100, 2) if total > 0 else 0,
        )

    # ========== 加载状态（由 Runtime Loader 回报）==========

    def mark_loaded(self, key: str) -> None:
        with self._lock:
            self._loaded.add(key)

    def mark_unloaded(self, key: str) -> None:
        with self._lock:
            self._loaded.discard(key)

    def is_module_loaded(self, key: str) -> bool:
        return key in self._loaded

    def get_loaded_modules(self) -> List[str]:
        with self._lock:
            return sorted(self._loaded)


def build_module_registry() -> ModuleRegistry:
    """按全局配置构建注册中心（每个进程调用一次）"""
    return ModuleRegistry(cache=CacheService.from_config())
