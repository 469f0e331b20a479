"""
声明式模块基线

来源（按顺序合并，同 key 后者覆盖前者）：
1. 内置声明 modhub.modules.DECLARED_MODULES
2. MODULES_CONFIG_FILE 指向的 JSON 文件

JSON 文件支持两种格式：
- 列表: [{"key": "coupon", "enabled": true, ...}, ...]
- 映射: {"coupon": {"enabled": true, ...}, ...}

环境变量 MODULE_<KEY>_ENABLED 可覆盖单个模块的 enabled 声明。
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from modhub.config import config
from modhub.core.logger import logger
from modhub.core.modules.base import ModuleDescriptor


def _env_override_name(key: str) -> str:
    normalized = "".join(ch if ch.isalnum() else "_" for ch in key).upper()
    return f"MODULE_{normalized}_ENABLED"


def apply_env_overrides(descriptor: ModuleDescriptor) -> ModuleDescriptor:
    """应用 MODULE_<KEY>_ENABLED 环境变量覆盖"""
    value = os.getenv(_env_override_name(descriptor.key))
    if value is None:
        return descriptor
    return descriptor.model_copy(update={"enabled": value.lower() in ("true", "1", "yes")})


def parse_declarations(raw: Any) -> List[ModuleDescriptor]:
    """
    解析声明数据，跳过无效条目

    Args:
        raw: JSON 解析结果（列表或映射）
    """
    if isinstance(raw, dict):
        items = []
        for key, value in raw.items():
            if value is not None and not isinstance(value, dict):
                logger.error(f"模块声明 [{key}] 无效，需要对象，实际为 {type(value).__name__}，已跳过")
                continue
            items.append({"key": key, **(value or {})})
    elif isinstance(raw, list):
        items = raw
    else:
        logger.error(f"模块声明格式无效，需要列表或对象，实际为 {type(raw).__name__}")
        return []

    descriptors = []
    for item in items:
        try:
            descriptors.append(ModuleDescriptor.model_validate(item))
        except ValidationError as e:
            key = item.get("key", "?") if isinstance(item, dict) else "?"
            logger.error(f"模块声明 [{key}] 无效，已跳过: {e}")
    return descriptors


def load_declarations_file(path: str) -> List[ModuleDescriptor]:
    """读取 JSON 声明文件，文件不存在或格式错误时返回空列表"""
    file_path = Path(path)
    if not file_path.exists():
        logger.warning(f"模块配置文件不存在: {path}")
        return []

    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"读取模块配置文件失败 {path}: {e}")
        return []

    return parse_declarations(raw)


def load_declared_modules(config_file: Optional[str] = None) -> List[ModuleDescriptor]:
    """加载完整的声明式模块列表（保持声明顺序）"""
    from modhub.modules import DECLARED_MODULES

    merged: Dict[str, ModuleDescriptor] = {}
    for descriptor in DECLARED_MODULES:
        merged[descriptor.key] = descriptor

    path = config_file if config_file is not None else config.modules_config_file
    if path:
        for descriptor in load_declarations_file(path):
            merged[descriptor.key] = descriptor

    return [apply_env_overrides(descriptor) for descriptor in merged.values()]
