"""
统一异常定义

模块生命周期中的所有预期错误都是 ModuleException 的子类：
- 携带出错的模块 key（或阻塞操作的 key 列表）
- 自带 HTTP 状态码，API 层直接渲染，CLI 层直接输出 message
"""

from typing import Any, Dict, List, Optional, Sequence

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from modhub.core.logger import logger


class ModuleException(HTTPException):
    """模块操作异常基类"""

    status_code_default = 400
    error_type = "module_error"

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        keys: Optional[Sequence[str]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.key = key
        self.keys: List[str] = list(keys or [])
        super().__init__(status_code=status_code or self.status_code_default, detail=message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.message,
                "key": self.key,
                "keys": self.keys,
            }
        }


class ModuleNotFoundException(ModuleException):
    """模块不存在"""

    status_code_default = 404
    error_type = "not_found"

    def __init__(self, key: str):
        super().__init__(f"Module '{key}' not found", key=key)


class DuplicateModuleException(ModuleException):
    """模块 key 已存在"""

    status_code_default = 409
    error_type = "duplicate_key"

    def __init__(self, key: str):
        super().__init__(f"Module '{key}' already exists", key=key)


class CoreModuleImmutableException(ModuleException):
    """核心模块不可启用 / 禁用 / 卸载"""

    status_code_default = 403
    error_type = "core_module_immutable"

    def __init__(self, key: str, action: str = "modified"):
        super().__init__(f"Core module '{key}' cannot be {action}", key=key)


class UnmetDependenciesException(ModuleException):
    """存在未启用或不存在的依赖模块"""

    status_code_default = 409
    error_type = "unmet_dependencies"

    def __init__(self, key: str, missing: Sequence[str]):
        super().__init__(
            f"Module '{key}' has unmet dependencies: {', '.join(missing)}",
            key=key,
            keys=missing,
        )


class HasDependentsException(ModuleException):
    """仍有已启用模块依赖当前模块"""

    status_code_default = 409
    error_type = "has_dependents"

    def __init__(self, key: str, dependents: Sequence[str], action: str = "disable"):
        super().__init__(
            f"Cannot {action} module '{key}' because other modules depend on it: "
            f"{', '.join(dependents)}",
            key=key,
            keys=dependents,
        )


class InvalidSettingsPayloadException(ModuleException):
    """模块配置 / 声明格式错误"""

    status_code_default = 422
    error_type = "invalid_settings_payload"


class OperationNotAllowedException(ModuleException):
    """操作被部署配置禁止（MODULE_ALLOW_INSTALL / MODULE_ALLOW_UNINSTALL）"""

    status_code_default = 403
    error_type = "operation_not_allowed"


class ModuleDisabledException(ModuleException):
    """模块未启用，无法注册"""

    status_code_default = 409
    error_type = "module_disabled"

    def __init__(self, key: str):
        super().__init__(f"Module '{key}' is disabled", key=key)


class IntegrationNotFoundException(ModuleException):
    """集成入口无法解析"""

    status_code_default = 404
    error_type = "integration_not_found"

    def __init__(self, key: str, ref: Optional[str] = None):
        suffix = f" ({ref})" if ref else ""
        super().__init__(
            f"Integration not found or invalid for module '{key}'{suffix}", key=key
        )


class ModuleNotLoadedException(ModuleException):
    """模块未加载，无法启动"""

    status_code_default = 409
    error_type = "module_not_loaded"

    def __init__(self, key: str):
        super().__init__(f"Module '{key}' not loaded", key=key)


class ExceptionHandlers:
    """FastAPI 全局异常处理器"""

    @staticmethod
    async def handle_module_exception(request: Request, exc: ModuleException) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @staticmethod
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"type": "http_error", "message": str(exc.detail)}},
        )

    @staticmethod
    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(
            "{} {} 未预期异常: {}: {}", request.method, request.url.path, type(exc).__name__, exc
        )
        return JSONResponse(
            status_code=500,
            content={"error": {"type": "internal_error", "message": str(exc)}},
        )
