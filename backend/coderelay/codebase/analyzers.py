# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  符号分析器 - 按文件类型提取函数、类、导入与导出
  Symbol Analyzers - Per-language extraction of functions, classes, imports and exports.

实现方式 / Implementation:
  - Python: 基于 ast 的结构化分析 / structural analysis with the ast module
  - JS/TS: 逐行正则分析 / line-based pattern analysis
  - 其他: 通用正则兜底 / generic regex fallback
  任何分析器失败都会退回通用分析器。Any analyzer failure degrades to the generic one.
"""

import ast
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from coderelay.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Symbols:
    """
    提取出的符号 / Extracted symbols of one file
    """
    functions: List[str] = field(default_factory=list)
    classes: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)

    def dedupe(self) -> "Symbols":
        """Drop repeated names, keeping first-seen order."""
        return Symbols(
            functions=_unique(self.functions),
            classes=_unique(self.classes),
            imports=_unique(self.imports),
            exports=_unique(self.exports),
        )


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class SymbolAnalyzer(ABC):
    """
    符号分析器抽象基类 / Symbol analyzer capability interface
    """

    name: str = "base"

    @abstractmethod
    def extract(self, content: str) -> Symbols:
        """
        从文件内容提取符号 / Extract symbols from file content.

        Args:
            content: 文件全文 / Full file text

        Returns:
            Symbols 实例 / Extracted symbols
        """


class PythonAnalyzer(SymbolAnalyzer):
    """
    Python 结构化分析器 / Structural analyzer for Python sources

    Functions include methods and lambdas bound to names; exports come from
    a literal ``__all__``.
    """

    name = "python"

    def extract(self, content: str) -> Symbols:
        tree = ast.parse(content)
        symbols = Symbols()

        for node in ast.walk(tree):
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                symbols.functions.append(node.name)
            elif isinstance(node, ast.ClassDef):
                symbols.classes.append(node.name)
            elif isinstance(node, ast.Import):
                symbols.imports.extend(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                symbols.imports.append("." * (node.level or 0) + (node.module or ""))
            elif isinstance(node, ast.Assign) and isinstance(node.value, ast.Lambda):
                symbols.functions.extend(
                    target.id for target in node.targets if isinstance(target, ast.Name)
                )

        symbols.exports.extend(self._dunder_all(tree))
        return symbols.dedupe()

    @staticmethod
    def _dunder_all(tree: ast.Module) -> List[str]:
        names: List[str] = []
        for node in tree.body:
            if not isinstance(node, (ast.Assign, ast.AugAssign)):
                continue
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            if not any(isinstance(t, ast.Name) and t.id == "__all__" for t in targets):
                continue
            if isinstance(node.value, (ast.List, ast.Tuple)):
                names.extend(
                    elt.value for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                )
        return names


class ScriptAnalyzer(SymbolAnalyzer):
    """
    JS/TS 逐行分析器 / Line-based analyzer for the JavaScript family
    """

    name = "script"

    FUNCTION_PATTERNS = (
        re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*([A-Za-z_$][\w$]*)"),
        re.compile(
            r"^\s*(?:export\s+)?(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*(?::[^=]+)?=\s*"
            r"(?:async\s+)?(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|[A-Za-z_$][\w$]*\s*=>)"
        ),
    )
    CLASS_PATTERN = re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+([A-Za-z_$][\w$]*)")
    IMPORT_PATTERNS = (
        re.compile(r"^\s*import\s+(?:.+?\s+from\s+)?['\"]([^'\"]+)['\"]"),
        re.compile(r"\brequire\(\s*['\"]([^'\"]+)['\"]\s*\)"),
        re.compile(r"\bimport\(\s*['\"]([^'\"]+)['\"]\s*\)"),
    )
    EXPORT_DECL = re.compile(
        r"^\s*export\s+(?:default\s+)?(?:async\s+)?(?:function\s*\*?|class|const|let|var|interface|type|enum)\s+([A-Za-z_$][\w$]*)"
    )
    EXPORT_LIST = re.compile(r"^\s*export\s*\{([^}]*)\}")
    EXPORT_DEFAULT_NAME = re.compile(r"^\s*export\s+default\s+([A-Za-z_$][\w$]*)\s*;?\s*$")
    COMMONJS_EXPORT = re.compile(r"^\s*(?:module\.)?exports\.([A-Za-z_$][\w$]*)\s*=")

    def extract(self, content: str) -> Symbols:
        symbols = Symbols()

        for line in content.splitlines():
            for pattern in self.FUNCTION_PATTERNS:
                match = pattern.match(line)
                if match:
                    symbols.functions.append(match.group(1))
                    break

            match = self.CLASS_PATTERN.match(line)
            if match:
                symbols.classes.append(match.group(1))

            for pattern in self.IMPORT_PATTERNS:
                symbols.imports.extend(pattern.findall(line))

            symbols.exports.extend(self._exports(line))

        return symbols.dedupe()

    def _exports(self, line: str) -> List[str]:
        match = self.EXPORT_DECL.match(line)
        if match:
            return [match.group(1)]

        match = self.EXPORT_LIST.match(line)
        if match:
            names = []
            for part in match.group(1).split(","):
                part = part.strip()
                if not part:
                    continue
                # `a as b` exports b
                names.append(part.split(" as ")[-1].strip())
            return names

        match = self.EXPORT_DEFAULT_NAME.match(line) or self.COMMONJS_EXPORT.match(line)
        if match:
            return [match.group(1)]
        return []


class GenericAnalyzer(SymbolAnalyzer):
    """
    通用正则分析器 / Generic regex analyzer, the universal fallback
    """

    name = "generic"

    FUNCTION_PATTERNS = (
        re.compile(r"function\s+(\w+)"),
        re.compile(r"(?:const|let|var)\s+(\w+)\s*=\s*\("),
        re.compile(r"^\s*(?:async\s+)?(?:def|func|fn)\s+(\w+)", re.MULTILINE),
    )
    CLASS_PATTERN = re.compile(r"class\s+(\w+)")

    def extract(self, content: str) -> Symbols:
        symbols = Symbols()
        for pattern in self.FUNCTION_PATTERNS:
            symbols.functions.extend(pattern.findall(content))
        symbols.classes.extend(self.CLASS_PATTERN.findall(content))
        return symbols.dedupe()


_GENERIC = GenericAnalyzer()

ANALYZERS_BY_EXTENSION: Dict[str, SymbolAnalyzer] = {
    ".py": PythonAnalyzer(),
    ".pyi": PythonAnalyzer(),
    ".js": ScriptAnalyzer(),
    ".jsx": ScriptAnalyzer(),
    ".mjs": ScriptAnalyzer(),
    ".cjs": ScriptAnalyzer(),
    ".ts": ScriptAnalyzer(),
    ".tsx": ScriptAnalyzer(),
}


def get_analyzer(extension: Optional[str]) -> SymbolAnalyzer:
    """按扩展名选择分析器 / Select an analyzer by file extension."""
    return ANALYZERS_BY_EXTENSION.get((extension or "").lower(), _GENERIC)


def extract_symbols(content: str, extension: Optional[str] = None, path: str = "") -> Symbols:
    """
    提取符号，失败时退回通用分析器

    Extract symbols with the analyzer for ``extension``. Any analyzer failure
    (for example a syntax error) degrades to the generic analyzer for this file
    instead of aborting it.

    Args:
        content: 文件内容 / File content
        extension: 文件扩展名（含点） / Extension including the dot
        path: 仅用于日志 / Only used for logging

    Returns:
        Symbols 实例 / Extracted symbols
    """
    analyzer = get_analyzer(extension)
    try:
        return analyzer.extract(content)
    except Exception as e:
        if analyzer is _GENERIC:
            raise
        logger.debug("%s analyzer failed for %s, using generic: %s", analyzer.name, path or extension, e)
        return _GENERIC.extract(content)
