# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  日志配置 - 所有 coderelay.* 日志器共享一组处理器
  Logging setup - every coderelay.* logger shares one pair of handlers

  Handlers live on the package logger ("coderelay") and module loggers
  propagate to it, so each record is written once no matter how many
  modules call :func:`get_logger`. The log directory is created on first use.

使用示例 / Usage:
    from coderelay.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("索引完成 / Index built")
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Union

from coderelay.config import settings

PACKAGE_LOGGER = "coderelay"
LOG_FILE_NAME = "coderelay.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_shared_handlers: List[logging.Handler] = []


def _console_level() -> int:
    return logging.DEBUG if settings.debug else logging.INFO


def build_handlers(log_dir: Union[str, Path]) -> List[logging.Handler]:
    """
    构建控制台与滚动文件处理器

    The console follows the debug setting; the file always records DEBUG.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(_console_level())

    log_file = RotatingFileHandler(
        directory / LOG_FILE_NAME,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    log_file.setLevel(logging.DEBUG)

    handlers: List[logging.Handler] = [console, log_file]
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _attach_shared(logger: logging.Logger) -> None:
    if not _shared_handlers:
        _shared_handlers.extend(build_handlers(settings.log_dir))
    for handler in _shared_handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)
    logger.setLevel(_console_level())


def get_logger(name: str) -> logging.Logger:
    """
    获取日志器 / Return the logger for ``name``.

    Loggers inside the package inherit the package logger's handlers and
    level; any other name gets the shared handlers attached directly.
    """
    logger = logging.getLogger(name)
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        _attach_shared(logging.getLogger(PACKAGE_LOGGER))
    else:
        _attach_shared(logger)
    return logger
