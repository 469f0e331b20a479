"""
Heartbeat 模块

提供进程存活探针，演示约定式集成入口：modhub.modules.heartbeat:HeartbeatModule
"""

import time
from typing import Optional

from modhub.core.modules.base import ModuleDefinition, ModuleHealth

_started_at: Optional[float] = None


def _get_router():
    """延迟导入路由（避免启动时加载重依赖）"""
    from modhub.modules.heartbeat.routes import router

    return router


async def _on_startup() -> None:
    global _started_at
    _started_at = time.time()


async def _on_shutdown() -> None:
    global _started_at
    _started_at = None


async def _health_check() -> ModuleHealth:
    return ModuleHealth.HEALTHY if _started_at is not None else ModuleHealth.UNKNOWN


def uptime_seconds() -> Optional[float]:
    if _started_at is None:
        return None
    return round(time.time() - _started_at, 3)


class HeartbeatModule(ModuleDefinition):
    """Heartbeat 模块定义"""

    def __init__(self) -> None:
        super().__init__(
            key="heartbeat",
            api_prefix="/api/modules/heartbeat",
            router_factory=_get_router,
            on_startup=_on_startup,
            on_shutdown=_on_shutdown,
            health_check=_health_check,
        )
