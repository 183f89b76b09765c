# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  存储基类 - 工作区目录下 JSON/文本文档的异步读写与原子写入
  Base Storage - Async JSON/text I/O with atomic writes under a project workspace directory.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles

from coderelay.config import WORKSPACE_DIR_NAME
from coderelay.exceptions import StorageError
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)


class BaseStorage:
    """
    存储基类 / Base storage

    All documents live under ``<project_root>/<workspace_dir_name>/``.

    Attributes:
        project_root (Path): 项目根目录 / Project root
        workspace (Path): 工作区目录 / Workspace directory
        encoding (str): 文件编码 / File encoding
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        workspace_dir_name: str = WORKSPACE_DIR_NAME,
        encoding: str = "utf-8",
    ):
        self.project_root = Path(project_root).resolve()
        self.workspace = self.project_root / workspace_dir_name
        self.encoding = encoding

    @staticmethod
    def ensure_dir(path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def get_workspace_path(self, name: str) -> Path:
        return self.workspace / name

    async def read_json(self, path: Path) -> Optional[Any]:
        """
        读取 JSON 文档 / Read a JSON document.

        Returns ``None`` when the file does not exist.

        Raises:
            StorageError: 文件损坏或无法读取 / Unreadable or malformed file
        """
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding=self.encoding) as f:
                raw = await f.read()
            return json.loads(raw) if raw.strip() else None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path.name}: {e}") from e

    async def write_json(self, path: Path, data: Any) -> None:
        payload = json.dumps(data, ensure_ascii=False, indent=2, default=str)
        await self._atomic_write(path, payload)

    async def read_text(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding=self.encoding) as f:
            return await f.read()

    async def _atomic_write(self, path: Path, payload: str) -> None:
        """
        原子写入 / Write to a temp file in the same directory, then replace.
        """
        self.ensure_dir(path.parent)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        os.close(fd)
        try:
            async with aiofiles.open(tmp_path, "w", encoding=self.encoding) as f:
                await f.write(payload)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Failed to write {path.name}: {e}") from e
