"""
模块基础定义

包含模块声明、运行时定义和状态视图的数据结构
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from modhub.config.constants import ModuleDefaults
from modhub.core.modules.naming import display_name_from_key

if TYPE_CHECKING:
    from fastapi import APIRouter

    from modhub.models.database import ModuleSetting

MODULE_KEY_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]*$"


class ModuleHealth(str, Enum):
    """模块健康状态"""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ModuleDescriptor(BaseModel):
    """
    模块声明 - 声明式基线 / 安装请求的统一输入

    未给出的字段使用安装默认值；name 缺省时由 key 推导
    """

    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1, max_length=100, pattern=MODULE_KEY_PATTERN)
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None

    enabled: bool = ModuleDefaults.ENABLED
    auto_register: bool = ModuleDefaults.AUTO_REGISTER
    is_core: bool = False

    integration_ref: Optional[str] = Field(default=None, max_length=255)
    settings: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)

    version: Optional[str] = ModuleDefaults.VERSION
    author: Optional[str] = None
    changelog: Optional[str] = None
    sort_order: int = ModuleDefaults.SORT_ORDER

    def to_fields(self) -> Dict[str, Any]:
        """转换为 store 写入字段（不含 key）"""
        data = self.model_dump(exclude={"key"})
        data["name"] = self.name or display_name_from_key(self.key)
        data["settings"] = dict(self.settings)
        data["dependencies"] = list(self.dependencies)
        return data


@dataclass
class ModuleConfig:
    """
    单个模块的解析后配置

    交给 Runtime Loader 使用，可 JSON 序列化以便缓存
    """

    key: str
    enabled: bool
    auto_register: bool
    integration_ref: Optional[str]
    settings: Dict[str, Any]
    dependencies: List[str]
    version: Optional[str]
    author: Optional[str]
    is_core: bool

    @classmethod
    def from_record(cls, record: ModuleSetting) -> ModuleConfig:
        return cls(
            key=record.key,
            enabled=bool(record.enabled),
            auto_register=bool(record.auto_register),
            integration_ref=record.integration_ref,
            settings=dict(record.settings or {}),
            dependencies=list(record.dependencies or []),
            version=record.version,
            author=record.author,
            is_core=bool(record.is_core),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ModuleConfig:
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ModuleDefinition:
    """
    模块运行时定义

    由 integration_ref（或约定路径）解析得到，钩子函数内部延迟导入重依赖
    """

    key: str

    # 路由前缀仅用于日志和文档，router 自带 prefix
    api_prefix: Optional[str] = None

    # 工厂函数 - 内部再 import 重依赖
    router_factory: Optional[Callable[[], "APIRouter"]] = None

    # 生命周期钩子
    on_startup: Optional[Callable[[], Awaitable[None]]] = None
    on_shutdown: Optional[Callable[[], Awaitable[None]]] = None
    health_check: Optional[Callable[[], Awaitable[ModuleHealth]]] = None


@dataclass
class ModuleStatus:
    """
    模块状态视图

    记录的全部字段 + 运行时信息，供 API / CLI 展示
    """

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

    # 运行时计算，不缓存
    loaded: bool = False
    can_be_disabled: bool = True
    has_unmet_dependencies: bool = False
    unmet_dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ModuleStatistics:
    """模块统计（每次实时计算）"""

    total: int
    enabled: int
    disabled: int
    core: int
    custom: int
    loaded: int
    enabled_percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    """
    声明式基线同步结果

    skipped=True 表示存储不可用，本次同步整体为 no-op
    """

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated)
