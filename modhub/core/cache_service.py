"""
模块读缓存服务

缓存只是性能优化，数据库始终是唯一真相源：
- 写操作必须主动 invalidate，不依赖 TTL 过期
- 缓存不可用时 get_or_compute 直接重新计算，invalidate 变为 no-op，不会抛出异常

后端：
- redis: 多进程共享，值以 JSON 保存（SETEX）
- memory: 进程内 TTL 字典（未配置 Redis 或连接失败时）
- 关闭（MODULE_CACHE_ENABLED=false）: 每次都重新计算
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from modhub.config import config
from modhub.config.constants import CacheBackend
from modhub.core.logger import logger


class CacheService:
    """带 TTL 的 get-or-compute 缓存，按前缀隔离命名空间"""

    def __init__(
        self,
        prefix: str = "module_settings",
        enabled: bool = True,
        redis_client: Optional[redis.Redis] = None,
    ) -> None:
        self.prefix = prefix
        self.enabled = enabled
        self._redis = redis_client
        self._memory: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls) -> CacheService:
        """按全局配置构建缓存服务"""
        redis_client = None
        if config.module_cache_enabled and config.module_cache_backend == CacheBackend.REDIS:
            from modhub.clients.redis_client import get_redis_client_sync

            try:
                redis_client = get_redis_client_sync()
            except RuntimeError as e:
                # REDIS_REQUIRED 只约束 Redis 客户端本身，模块缓存始终允许降级
                logger.warning(f"Redis 客户端初始化失败，模块缓存降级为进程内存: {e}")
                redis_client = None
            if redis_client is None:
                logger.warning("Redis 不可用，模块缓存使用进程内存")

        return cls(
            prefix=config.module_cache_prefix,
            enabled=config.module_cache_enabled,
            redis_client=redis_client,
        )

    @property
    def backend(self) -> str:
        if not self.enabled:
            return "disabled"
        return CacheBackend.REDIS if self._redis is not None else CacheBackend.MEMORY

    def key(self, *parts: str) -> str:
        """拼接带前缀的缓存键"""
        return ":".join([self.prefix, *parts])

    # ========== 读 ==========

    def get_or_compute(self, cache_key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        """
        读取缓存，未命中时计算并写入

        Args:
            cache_key: 完整缓存键（由 key() 生成）
            ttl: 过期时间（秒）
            compute: 未命中时调用，返回值必须可 JSON 序列化
        """
        if not self.enabled:
            return compute()

        cached = self._get(cache_key)
        if cached is not None:
            return json.loads(cached)

        value = compute()
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"缓存值无法序列化，跳过写入 [{cache_key}]: {e}")
            return value

        self._set(cache_key, payload, ttl)
        return value

    def _get(self, cache_key: str) -> Optional[str]:
        if self._redis is not None:
            try:
                return self._redis.get(cache_key)
            except redis.RedisError as e:
                logger.warning(f"Redis 读取失败，降级为直接计算 [{cache_key}]: {e}")
                return None

        with self._lock:
            entry = self._memory.get(cache_key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= time.monotonic():
                del self._memory[cache_key]
                return None
            return payload

    def _set(self, cache_key: str, payload: str, ttl: int) -> None:
        if self._redis is not None:
            try:
                self._redis.setex(cache_key, ttl, payload)
            except redis.RedisError as e:
                logger.warning(f"Redis 写入失败 [{cache_key}]: {e}")
            return

        with self._lock:
            self._memory[cache_key] = (time.monotonic() + ttl, payload)

    # ========== 失效 ==========

    def invalidate(self, cache_key: str) -> None:
        """删除单个缓存键"""
        if not self.enabled:
            return

        if self._redis is not None:
            try:
                self._redis.delete(cache_key)
            except redis.RedisError as e:
                logger.warning(f"Redis 删除失败 [{cache_key}]: {e}")
            return

        with self._lock:
            self._memory.pop(cache_key, None)

    def invalidate_all(self) -> None:
        """删除当前前缀下的全部缓存键"""
        if not self.enabled:
            return

        pattern = f"{self.prefix}:*"
        if self._redis is not None:
            try:
                keys = list(self._redis.scan_iter(match=pattern, count=500))
                if keys:
                    self._redis.delete(*keys)
                logger.debug("模块缓存已清空: {} 个键", len(keys))
            except redis.RedisError as e:
                logger.warning(f"Redis 批量删除失败 [{pattern}]: {e}")
            return

        marker = f"{self.prefix}:"
        with self._lock:
            for cache_key in [k for k in self._memory if k.startswith(marker)]:
                del self._memory[cache_key]
