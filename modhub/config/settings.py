"""
服务器配置
从环境变量或 .env 文件加载配置
"""

import os
from pathlib import Path

from dotenv import load_dotenv

env_file = Path(".env")
if env_file.exists():
    load_dotenv(env_file)

from .constants import CacheBackend, CacheTTL, ModuleDefaults


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


class Config:
    def __init__(self) -> None:
        # 服务器配置
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "8084"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        # 为空时只输出到 stderr
        self.log_file = os.getenv("LOG_FILE", "")

        # 环境配置 - 智能检测
        # Docker 部署默认为生产环境，本地开发默认为开发环境
        is_docker = (
            os.path.exists("/.dockerenv")
            or os.environ.get("DOCKER_CONTAINER", "false").lower() == "true"
        )
        default_env = "production" if is_docker else "development"
        self.environment = os.getenv("ENVIRONMENT", default_env)

        # 数据库配置 - 未设置时使用本地 SQLite，便于 CLI 直接使用
        self._database_url = os.getenv("DATABASE_URL", "sqlite:///./modhub.db")

        # Redis 配置（为空表示不使用 Redis，缓存降级为进程内存）
        self.redis_url = os.getenv("REDIS_URL", "")
        # Redis 依赖策略（生产默认必需，开发默认可选，可通过 REDIS_REQUIRED 覆盖）
        redis_required_env = os.getenv("REDIS_REQUIRED")
        if redis_required_env is None:
            self.require_redis = bool(self.redis_url) and self.environment not in {
                "development",
                "test",
                "testing",
            }
        else:
            self.require_redis = redis_required_env.lower() == "true"

        # 模块系统总开关
        self.modules_enabled = _env_bool("MODULES_ENABLED", True)

        # 声明式模块配置文件（JSON），为空时只使用内置声明
        self.modules_config_file = os.getenv("MODULES_CONFIG_FILE", "")

        # 约定式集成入口所在的包
        self.modules_package = os.getenv("MODULES_PACKAGE", ModuleDefaults.PACKAGE)

        # 模块缓存配置
        self.module_cache_enabled = _env_bool("MODULE_CACHE_ENABLED", True)
        default_backend = CacheBackend.REDIS if self.redis_url else CacheBackend.MEMORY
        self.module_cache_backend = os.getenv("MODULE_CACHE_BACKEND", default_backend).lower()
        self.module_cache_ttl = int(os.getenv("MODULE_CACHE_TTL", str(CacheTTL.MODULE_SETTINGS)))
        self.module_cache_prefix = os.getenv("MODULE_CACHE_PREFIX", "module_settings")

        # 模块管理策略
        self.module_allow_install = _env_bool("MODULE_ALLOW_INSTALL", True)
        self.module_allow_uninstall = _env_bool("MODULE_ALLOW_UNINSTALL", True)
        self.module_auto_sync_config = _env_bool("MODULE_AUTO_SYNC_CONFIG", True)

        # CORS配置 - 使用环境变量配置允许的源
        # 格式: 逗号分隔的域名列表,如 "http://localhost:3000,https://example.com"
        cors_origins = os.getenv("CORS_ORIGINS", "")
        self.cors_origins = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]

        self.docs_enabled = _env_bool("DOCS_ENABLED", self.environment != "production")

    @property
    def database_url(self) -> str:
        """
        数据库 URL

        在测试环境中可以通过 setter 覆盖
        """
        return self._database_url

    @database_url.setter
    def database_url(self, value: str):
        """允许在测试中设置数据库 URL"""
        self._database_url = value

    def log_startup_warnings(self) -> None:
        """
        记录启动时的配置警告
        这个方法应该在 logger 初始化后调用
        """
        from modhub.core.logger import logger

        if self.environment == "production" and self._database_url.startswith("sqlite"):
            logger.warning("生产环境使用 SQLite 数据库，多进程部署时模块状态无法行级加锁")

        if self.module_cache_backend not in (CacheBackend.REDIS, CacheBackend.MEMORY):
            logger.warning(
                f"未知的 MODULE_CACHE_BACKEND={self.module_cache_backend}，将使用内存缓存"
            )

        if self.module_cache_backend == CacheBackend.REDIS and not self.redis_url:
            logger.warning("MODULE_CACHE_BACKEND=redis 但未设置 REDIS_URL，将使用内存缓存")

        if self.modules_config_file and not Path(self.modules_config_file).exists():
            logger.warning(f"模块配置文件不存在: {self.modules_config_file}")

    def __repr__(self):
        """配置信息字符串表示"""
        return f"""
Configuration:
  Server: {self.host}:{self.port}
  Log Level: {self.log_level}
  Environment: {self.environment}
  Module Cache: {self.module_cache_backend if self.module_cache_enabled else "disabled"}
"""


# 创建全局配置实例
config = Config()
