"""
全局 Redis 客户端

模块缓存是同步调用链，这里只维护同步客户端：
- 未配置 REDIS_URL 时返回 None，由调用方降级
- 连接失败时：require_redis=True 抛出 RuntimeError，否则返回 None
"""

from __future__ import annotations

import threading

import redis

from modhub.config import config
from modhub.core.logger import logger

_client: redis.Redis | None = None
_lock = threading.Lock()


def get_redis_client_sync(require_redis: bool | None = None) -> redis.Redis | None:
    """获取同步 Redis 客户端（首次调用时连接并 ping）"""
    global _client

    if require_redis is None:
        require_redis = config.require_redis

    if _client is not None:
        return _client

    if not config.redis_url:
        if require_redis:
            raise RuntimeError("REDIS_URL is required but not configured")
        return None

    with _lock:
        if _client is not None:
            return _client
        try:
            client = redis.Redis.from_url(
                config.redis_url,
                socket_connect_timeout=2,
                socket_timeout=2,
                decode_responses=True,
            )
            client.ping()
        except redis.RedisError as e:
            if require_redis:
                raise RuntimeError(f"Redis connection failed: {e}") from e
            logger.warning(f"Redis 连接失败，模块缓存将降级: {e}")
            return None

        _client = client
        logger.info("Redis 客户端已连接")
        return _client


def close_redis_client() -> None:
    """关闭全局 Redis 客户端"""
    global _client
    with _lock:
        if _client is not None:
            try:
                _client.close()
            except redis.RedisError as e:
                logger.warning(f"关闭 Redis 客户端失败: {e}")
            _client = None
