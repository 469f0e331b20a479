"""
统一日志配置

基于 loguru，全局只配置一次：
- stderr 输出，级别由 LOG_LEVEL 控制
- LOG_FILE 非空时额外写入滚动文件
"""

import sys

from loguru import logger

from modhub.config import config

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logger(level: str | None = None) -> None:
    """（重新）配置全局 logger"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or config.log_level).upper(),
        format=_FORMAT,
        backtrace=False,
        diagnose=config.environment == "development",
    )

    if config.log_file:
        logger.add(
            config.log_file,
            level=(level or config.log_level).upper(),
            rotation="10 MB",
            retention="7 days",
            encoding="utf-8",
            enqueue=True,
        )


setup_logger()

__all__ = ["logger", "setup_logger"]
