# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  检查点锁 - 基于 asyncio.Lock 的按文件锁，保证检查点写入互不重叠
  Checkpoint Lock - Per-path asyncio locks so two checkpoints never overlap.

实现方式 / Implementation:
  使用asyncio.Lock实现进程内的文件锁定。适用于单进程应用。
  Uses asyncio.Lock for in-process locking suitable for single-process apps.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional

from coderelay.utils.logger import get_logger

logger = get_logger(__name__)


class AsyncFileLock:
    """
    异步文件锁 / Async file lock

    Each resolved path gets its own ``asyncio.Lock``; different paths can be
    held concurrently.

    Attributes:
        _locks (Dict[str, asyncio.Lock]): 路径到锁的映射 / Path to lock map
        _global_lock (asyncio.Lock): 保护_locks字典本身 / Guards the map itself
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()

    async def _get_lock(self, key: str) -> asyncio.Lock:
        async with self._global_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    @asynccontextmanager
    async def lock(self, path: Path, timeout: Optional[float] = 30.0):
        """
        获取文件锁（上下文管理器）/ Acquire the lock for ``path``.

        Args:
            path: 被保护的路径 / Protected path
            timeout: 超时时间（秒），None表示无限等待 / Seconds to wait, None waits forever

        Raises:
            asyncio.TimeoutError: 超时未获取到锁 / Lock not acquired in time

        Example:
            >>> async with file_lock.lock(workspace):
            ...     await storage.write_json(...)
        """
        lock = await self._get_lock(str(path.resolve()))
        if timeout is not None:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        else:
            await lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, path: Path) -> bool:
        lock = self._locks.get(str(path.resolve()))
        return bool(lock and lock.locked())
