"""
Storage Module / 存储模块
File-based persistence for the ledger documents
基于文件的账本文档持久化
"""

from .base import BaseStorage
from .file_lock import AsyncFileLock
from .ledger_store import LedgerStorage

__all__ = [
    "BaseStorage",
    "AsyncFileLock",
    "LedgerStorage",
]
