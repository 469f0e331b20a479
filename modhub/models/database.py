"""
数据库模型定义
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from ..config.constants import ModuleDefaults

Base = declarative_base()


class ModuleSetting(Base):
    """功能模块表 - 每个模块 key 一条记录"""

    __tablename__ = "module_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), unique=True, index=True, nullable=False)  # payment_gateway
    name = Column(String(255), nullable=False)  # Payment Gateway
    description = Column(Text, nullable=True)

    # 状态
    enabled = Column(Boolean, default=False, nullable=False)
    auto_register = Column(Boolean, default=ModuleDefaults.AUTO_REGISTER, nullable=False)
    is_core = Column(Boolean, default=False, nullable=False)  # 核心模块不可启停 / 卸载

    # 集成入口（为空时按 key 约定解析）
    integration_ref = Column(String(255), nullable=True)

    # 模块私有配置，部分更新时按 key 合并
    settings = Column(JSON, nullable=False, default=dict)
    # 启用前必须已启用的模块 key 列表，仅 install / sync 写入
    dependencies = Column(JSON, nullable=False, default=list)

    # 元数据（仅展示用）
    version = Column(String(50), nullable=True, default=ModuleDefaults.VERSION)
    author = Column(String(255), nullable=True)
    changelog = Column(Text, nullable=True)

    sort_order = Column(Integer, default=ModuleDefaults.SORT_ORDER, nullable=False)

    # 时间戳
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_module_settings_enabled_auto", "enabled", "auto_register"),
        Index("idx_module_settings_is_core", "is_core"),
    )

    def __repr__(self) -> str:
        return f"<ModuleSetting {self.key} enabled={self.enabled} core={self.is_core}>"
