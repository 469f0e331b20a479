"""
内置功能模块声明

进程启动时作为声明式基线同步到数据库；运行时集成入口按约定解析为
modhub.modules.<key>:<Studly>Module
"""

from typing import List

from modhub.core.modules.base import ModuleDescriptor

# 所有内置模块声明
DECLARED_MODULES: List[ModuleDescriptor] = [
    ModuleDescriptor(
        key="heartbeat",
        name="Heartbeat",
        description="进程存活探针，提供 /api/modules/heartbeat 接口",
        enabled=True,
        auto_register=True,
        author="modhub",
        sort_order=0,
    ),
]

__all__ = ["DECLARED_MODULES"]
