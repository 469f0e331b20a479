# Constants for better maintainability
# ==============================================================================
# 缓存相关常量
# ==============================================================================


class CacheTTL:
    """缓存过期时间配置（秒）"""

    # 已启用模块列表 / 单模块配置 - 写操作会主动失效，TTL 只是兜底
    MODULE_SETTINGS = 3600  # 1小时


class CacheKeys:
    """缓存键后缀（前缀由 MODULE_CACHE_PREFIX 决定）"""

    ALL_ENABLED = "all_enabled"
    MODULE_CONFIG = "config"


class CacheBackend:
    """缓存后端名称"""

    REDIS = "redis"
    MEMORY = "memory"


# ==============================================================================
# 模块默认值
# ==============================================================================


class ModuleDefaults:
    """安装 / 同步时未显式指定字段的默认值"""

    VERSION = "1.0.0"
    SORT_ORDER = 0
    AUTO_REGISTER = True
    ENABLED = False

    # 约定式集成入口: <modules_package>.<key>:<Studly>Module
    PACKAGE = "modhub.modules"
    ATTRIBUTE_SUFFIX = "Module"
    # integration_ref 只给出模块路径时使用的属性名
    ATTRIBUTE = "module"
