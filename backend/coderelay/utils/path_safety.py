# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  路径安全 - 防止模型给出的路径逃逸出项目根目录
  Path Safety - Keeps model-supplied paths inside the project root.
"""

from pathlib import Path, PurePosixPath
from typing import Union


def to_relative_posix(path: Union[str, Path]) -> str:
    """
    规范化为 POSIX 风格相对路径

    Normalize a project-relative path to POSIX form without a leading ``./``.

    Example:
        >>> to_relative_posix("src\\app.py")
        'src/app.py'
        >>> to_relative_posix("./src/app.py")
        'src/app.py'
    """
    text = str(path).strip().replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return str(PurePosixPath(text)) if text else ""


def validate_path_within(child: Path, parent: Path) -> Path:
    """
    验证child路径在parent目录内

    Validate that *child* resolves to a path inside *parent*.

    Args:
        child: 子路径 / Child path
        parent: 父路径 / Parent path

    Returns:
        解析后的子路径 / Resolved child path

    Raises:
        ValueError: 如果子路径逃逸出父目录 / If the child escapes the parent directory

    Example:
        >>> validate_path_within(Path("proj/src/a.py"), Path("proj"))
        PosixPath('/abs/proj/src/a.py')
        >>> validate_path_within(Path("proj/../etc"), Path("proj"))
        # Raises ValueError
    """
    resolved_parent = parent.resolve()
    resolved_child = child.resolve()

    if resolved_child != resolved_parent and resolved_parent not in resolved_child.parents:
        raise ValueError(f"路径逃逸项目目录 / Path escapes project directory: {child}")

    return resolved_child
