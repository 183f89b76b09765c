# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  项目文件服务 - 索引、搜索与动作执行共用的文件读写原语
  Project File Service - Read/write primitives shared by indexing, search and action execution.
  All paths are project-relative and validated to stay inside the project root.
"""

import os
import tempfile
from pathlib import Path
from typing import Union

import aiofiles

from coderelay.utils.logger import get_logger
from coderelay.utils.path_safety import to_relative_posix, validate_path_within

logger = get_logger(__name__)


class FileService:
    """
    项目文件服务 / File primitives scoped to one project root

    Attributes:
        root (Path): 项目根目录 / Resolved project root
        encoding (str): 文本编码 / Text encoding
    """

    def __init__(self, project_root: Union[str, Path], encoding: str = "utf-8"):
        self.root = Path(project_root).resolve()
        self.encoding = encoding

    def resolve(self, relative_path: Union[str, Path]) -> Path:
        """
        解析相对路径为绝对路径 / Resolve a project-relative path.

        Raises:
            ValueError: 路径逃逸项目根目录 / Path escapes the project root
        """
        rel = to_relative_posix(relative_path)
        return validate_path_within(self.root / rel, self.root)

    def relative(self, absolute_path: Union[str, Path]) -> str:
        return Path(absolute_path).resolve().relative_to(self.root).as_posix()

    def exists(self, relative_path: Union[str, Path]) -> bool:
        return self.resolve(relative_path).is_file()

    async def read_text(self, relative_path: Union[str, Path]) -> str:
        """Read a text file; undecodable bytes are replaced."""
        path = self.resolve(relative_path)
        async with aiofiles.open(path, "r", encoding=self.encoding, errors="replace") as f:
            return await f.read()

    async def write_text(self, relative_path: Union[str, Path], content: str) -> Path:
        """Write a text file atomically, creating parent directories."""
        path = self.resolve(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        os.close(fd)
        try:
            async with aiofiles.open(tmp_path, "w", encoding=self.encoding, newline="") as f:
                await f.write(content)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    async def delete(self, relative_path: Union[str, Path]) -> None:
        """Delete a file; missing files raise ``FileNotFoundError``."""
        path = self.resolve(relative_path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {to_relative_posix(relative_path)}")
        path.unlink()
