"""
模块 key 命名转换

纯函数，无副作用：
- studly_from_key: payment_gateway -> PaymentGateway（约定式集成入口名）
- display_name_from_key: payment_gateway -> Payment Gateway（默认显示名称）
"""

import re

_SEPARATORS = re.compile(r"[_-]+")


def _split_key(key: str) -> list[str]:
    return [part for part in _SEPARATORS.split(key) if part]


def studly_from_key(key: str) -> str:
    """按 _ / - 分段，每段首字母大写、其余小写后直接拼接"""
    return "".join(part[:1].upper() + part[1:].lower() for part in _split_key(key))


def display_name_from_key(key: str) -> str:
    """按 _ / - 分段，每段首字母大写后以空格拼接"""
    return " ".join(part[:1].upper() + part[1:] for part in _split_key(key))
