"""Heartbeat 模块路由"""

from typing import Any, Dict

from fastapi import APIRouter

router = APIRouter(prefix="/api/modules/heartbeat", tags=["Modules - Heartbeat"])


@router.get("")
async def heartbeat() -> Dict[str, Any]:
    """进程存活探针"""
    from modhub.modules.heartbeat import uptime_seconds

    return {"status": "ok", "uptime_seconds": uptime_seconds()}
