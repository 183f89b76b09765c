# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  代码库索引器 - 构建每个文件的符号表，支持关键字评分搜索、内容搜索、
  函数块提取与按行读取
  Codebase Indexer - Builds a per-file symbol table and serves scored file search,
  content search with block extraction, and line-range reads.

实现方式 / Implementation:
  - 目录与扩展名黑名单过滤 / directory-name and extension denylists
  - 超过大小上限的文件只登记不解析 / oversized files are recorded as skipped
  - 按扩展名选择分析器，失败退回通用分析器 / analyzers selected by extension
"""

import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from coderelay.codebase.analyzers import extract_symbols
from coderelay.context_engine.models import (
    FileSearchResult,
    LineRange,
    LoadedFile,
    SearchMatch,
)
from coderelay.exceptions import LineRangeError, PathResolutionError
from coderelay.schemas.index import IndexDocument, IndexEntry
from coderelay.services.file_service import FileService
from coderelay.utils.logger import get_logger
from coderelay.utils.path_safety import to_relative_posix

logger = get_logger(__name__)


SEARCH_MODES = ("simple", "extended", "function")

# 块起始行：声明关键字或 `name(args) {` 形状
BLOCK_KEYWORD_PATTERN = re.compile(
    r"^\s*(function|class|def|void|int|bool|char|float|double|String|public|private|protected|static|async)\s"
)
BLOCK_CALL_SHAPE_PATTERN = re.compile(r"^\s*\w+\s*\([^)]*\)\s*{?\s*$")


class CodebaseIndexer:
    """
    代码库索引器 / Codebase indexer

    Owns the symbol index of one project. Entries are keyed by the
    project-relative POSIX path.

    Attributes:
        files (FileService): 文件读取协作者 / File reading collaborator
        entries (Dict[str, IndexEntry]): 路径到条目的映射 / Path to entry map
        last_indexed (Optional[str]): 上次全量索引时间 / ISO time of the last full build
    """

    def __init__(
        self,
        files: FileService,
        codebase_cfg: Optional[Dict[str, Any]] = None,
        search_cfg: Optional[Dict[str, Any]] = None,
    ):
        codebase_cfg = codebase_cfg or {}
        search_cfg = search_cfg or {}

        self.files = files
        self.exclude_patterns = set(codebase_cfg.get("exclude_patterns", []))
        self.exclude_extensions = {ext.lower() for ext in codebase_cfg.get("exclude_extensions", [])}
        self.max_file_size = int(codebase_cfg.get("max_file_size", 500_000))
        self.stale_after_hours = float(codebase_cfg.get("stale_after_hours", 24))

        self.context_lines = int(search_cfg.get("context_lines", 3))
        self.edit_context_lines = int(search_cfg.get("edit_context_lines", 25))
        self.function_context_lines = int(search_cfg.get("function_context_lines", 50))
        self.small_file_threshold = int(search_cfg.get("small_file_threshold", 500))
        self.max_snippets_per_file = int(search_cfg.get("max_snippets_per_file", 3))

        self.entries: Dict[str, IndexEntry] = {}
        self.last_indexed: Optional[str] = None

    @property
    def project_root(self) -> Path:
        return self.files.root

    # ========== 索引构建 (Index Building) ==========

    def should_exclude(self, relative_path: str) -> bool:
        """
        判断路径是否应被排除 / Whether a relative path hits a denylist.

        A path is excluded when any of its directory components (or its name)
        is in the directory denylist, or its extension is in the extension
        denylist.
        """
        posix = PurePosixPath(to_relative_posix(relative_path))
        if any(part in self.exclude_patterns for part in posix.parts):
            return True
        return posix.suffix.lower() in self.exclude_extensions

    def _walk(self) -> Iterable[str]:
        root = self.project_root
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.exclude_patterns)
            for filename in sorted(filenames):
                relative = Path(dirpath, filename).relative_to(root).as_posix()
                if not self.should_exclude(relative):
                    yield relative

    async def build_index(self) -> int:
        """
        全量构建索引 / Rebuild the whole index.

        Returns:
            已索引文件数 / Number of indexed entries
        """
        logger.info("Indexing codebase at %s", self.project_root)
        entries: Dict[str, IndexEntry] = {}

        for relative in self._walk():
            entry = await self._index_file(relative)
            if entry is not None:
                entries[relative] = entry

        self.entries = entries
        self.last_indexed = datetime.now(timezone.utc).isoformat()
        skipped = sum(1 for e in entries.values() if e.skipped)
        logger.info("Indexed %d files (%d skipped)", len(entries), skipped)
        return len(entries)

    async def _index_file(self, relative: str) -> Optional[IndexEntry]:
        try:
            path = self.files.resolve(relative)
            stat = path.stat()
        except (OSError, ValueError) as e:
            logger.warning("Failed to stat %s: %s", relative, e)
            return None

        entry = IndexEntry(
            path=relative,
            size=stat.st_size,
            modified=stat.st_mtime,
            type=path.suffix.lower(),
        )

        if stat.st_size > self.max_file_size:
            entry.skipped = True
            entry.reason = "File too large"
            return entry

        try:
            content = await self.files.read_text(relative)
        except (OSError, UnicodeError) as e:
            logger.warning("Failed to read %s: %s", relative, e)
            entry.skipped = True
            entry.reason = f"Read failed: {e}"
            return entry

        symbols = extract_symbols(content, entry.type, relative)
        entry.functions = symbols.functions
        entry.classes = symbols.classes
        entry.imports = symbols.imports
        entry.exports = symbols.exports
        return entry

    async def update_index(self, path: str) -> Optional[IndexEntry]:
        """
        增量更新单个文件 / Replace the entry for one path.

        Removes the entry when the file no longer exists or is excluded.
        """
        relative = to_relative_posix(path)
        self.entries.pop(relative, None)
        if self.should_exclude(relative) or not self.files.exists(relative):
            return None

        entry = await self._index_file(relative)
        if entry is not None:
            self.entries[relative] = entry
        return entry

    def remove_from_index(self, path: str) -> bool:
        return self.entries.pop(to_relative_posix(path), None) is not None

    # ========== 查询 (Queries) ==========

    def get_file_info(self, path: str) -> Optional[IndexEntry]:
        return self.entries.get(to_relative_posix(path))

    def find_definition(self, name: str) -> List[IndexEntry]:
        """Entries whose functions, classes or exports contain ``name`` exactly."""
        return [
            e for e in self.entries.values()
            if name in e.functions or name in e.classes or name in e.exports
        ]

    def get_files_by_extension(self, extension: str) -> List[IndexEntry]:
        ext = extension.lower()
        if not ext.startswith("."):
            ext = f".{ext}"
        return [e for e in self.entries.values() if e.type == ext]

    def get_project_structure(self) -> Dict[str, Any]:
        extensions: Dict[str, int] = {}
        total_functions = 0
        total_classes = 0
        for entry in self.entries.values():
            extensions[entry.type] = extensions.get(entry.type, 0) + 1
            total_functions += len(entry.functions)
            total_classes += len(entry.classes)

        return {
            "file_count": len(self.entries),
            "extensions": extensions,
            "total_functions": total_functions,
            "total_classes": total_classes,
            "last_indexed": self.last_indexed,
        }

    def is_stale(self, max_age_hours: Optional[float] = None) -> bool:
        """索引是否过期 / True when never built or older than ``max_age_hours``."""
        if not self.last_indexed:
            return True
        max_age = self.stale_after_hours if max_age_hours is None else max_age_hours
        try:
            built = datetime.fromisoformat(self.last_indexed)
        except ValueError:
            return True
        if built.tzinfo is None:
            built = built.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - built > timedelta(hours=max_age)

    def search_files(self, query: str, limit: int = 5) -> List[IndexEntry]:
        """
        按关键字给文件评分 / Score every indexed file against ``query``.

        Path substring +10, each matching function or class +5, each matching
        import +2. When nothing scores, falls back to the whole index (if it is
        no larger than ``limit``) or the ``limit`` most recently modified files,
        so a non-empty index never yields an empty result.

        Args:
            query: 查询字符串 / Query text (case-insensitive substring)
            limit: 返回数量上限 / Maximum number of files

        Returns:
            按分数降序的条目列表 / Entries by descending score
        """
        limit = max(0, int(limit))
        needle = (query or "").lower()
        scored: List[Tuple[int, IndexEntry]] = []

        if needle:
            for entry in self.entries.values():
                score = 0
                if needle in entry.path.lower():
                    score += 10
                score += 5 * sum(1 for name in entry.functions if needle in name.lower())
                score += 5 * sum(1 for name in entry.classes if needle in name.lower())
                score += 2 * sum(1 for name in entry.imports if needle in name.lower())
                if score > 0:
                    scored.append((score, entry))

        if scored:
            scored.sort(key=lambda pair: pair[0], reverse=True)
            return [entry for _, entry in scored[:limit]]

        if not self.entries:
            return []

        logger.info("No keyword matches for %r, falling back to recent files", query)
        if len(self.entries) <= limit:
            return list(self.entries.values())
        recent = sorted(self.entries.values(), key=lambda e: e.modified, reverse=True)
        return recent[:limit]

    def find_file_by_name(self, attempted_path: str) -> str:
        """
        按文件名模糊解析路径 / Resolve a path by basename against the index.

        Raises:
            PathResolutionError: 零个或多个匹配 / No match, or an ambiguous match
        """
        relative = to_relative_posix(attempted_path)
        if relative in self.entries:
            return relative

        basename = PurePosixPath(relative).name
        candidates = [p for p in self.entries if PurePosixPath(p).name == basename]
        if len(candidates) == 1:
            logger.info("Resolved %s to %s", attempted_path, candidates[0])
            return candidates[0]
        if not candidates:
            raise PathResolutionError(
                f"File not found: {attempted_path}",
                attempted_path=attempted_path,
            )
        raise PathResolutionError(
            f"Ambiguous path {attempted_path}: {len(candidates)} files named {basename}",
            attempted_path=attempted_path,
            candidates=sorted(candidates),
        )

    # ========== 内容搜索 (Content Search) ==========

    async def _read_lines(self, relative: str) -> List[str]:
        content = await self.files.read_text(relative)
        return content.splitlines()

    async def search_file_contents(
        self,
        keywords: Sequence[str],
        context_lines: Optional[int] = None,
        mode: str = "simple",
    ) -> List[FileSearchResult]:
        """
        在文件内容中搜索关键字 / Case-insensitive line search over indexed files.

        Args:
            keywords: 关键字列表 / Keywords
            context_lines: simple 模式的上下文行数 / Context for ``simple`` mode
            mode: simple | extended | function

        Returns:
            按命中数降序的结果 / Results sorted by total matches, descending
        """
        if mode not in SEARCH_MODES:
            raise ValueError(f"Unknown search mode: {mode}")
        context = self.context_lines if context_lines is None else int(context_lines)
        keywords = [k for k in (kw.strip() for kw in keywords) if k]

        results: List[FileSearchResult] = []
        seen = set()
        for relative, entry in list(self.entries.items()):
            if entry.skipped or relative in seen:
                continue
            try:
                lines = await self._read_lines(relative)
            except (OSError, ValueError) as e:
                logger.warning("Failed to search %s: %s", relative, e)
                continue

            matches: List[SearchMatch] = []
            for keyword in keywords:
                lowered = keyword.lower()
                for idx, line in enumerate(lines):
                    if lowered in line.lower():
                        matches.append(self._build_match(lines, idx, keyword, mode, context))

            if matches:
                seen.add(relative)
                results.append(FileSearchResult(
                    path=str(self.files.resolve(relative)),
                    relative_path=relative,
                    matches=matches,
                ))

        results.sort(key=lambda r: r.total_matches, reverse=True)
        return results

    def _build_match(self, lines: List[str], idx: int, keyword: str, mode: str, context: int) -> SearchMatch:
        if mode == "function":
            start, end = self.extract_function_context(lines, idx, self.function_context_lines)
        else:
            radius = self.edit_context_lines if mode == "extended" else context
            start = max(0, idx - radius)
            end = min(len(lines) - 1, idx + radius)

        return SearchMatch(
            keyword=keyword,
            line_number=idx + 1,
            snippet="\n".join(lines[start:end + 1]),
            start_line=start + 1,
            end_line=end + 1,
        )

    @staticmethod
    def extract_function_context(lines: List[str], line_index: int, max_lines: int = 50) -> Tuple[int, int]:
        """
        提取命中行所在的函数/代码块 / Locate the block around a hit line.

        Scans backward from the hit with a right-to-left brace balance and
        stops at the first line where the balance goes negative or that looks
        like a declaration. Without such a line the start is a symmetric
        ``max_lines // 2`` window. Then scans forward from the start and ends
        at the first line after the hit where the balance is back to zero and
        the line holds a closing brace, capped at ``max_lines`` lines.

        Args:
            lines: 文件行列表 / File lines
            line_index: 命中行（0起） / Hit line, 0-indexed
            max_lines: 扫描上限 / Scan cap

        Returns:
            (start, end) 0起闭区间 / Inclusive 0-indexed bounds
        """
        if not lines:
            return 0, 0

        start: Optional[int] = None
        balance = 0
        for i in range(line_index, max(0, line_index - max_lines) - 1, -1):
            line = lines[i]
            for ch in reversed(line):
                if ch == "}":
                    balance += 1
                elif ch == "{":
                    balance -= 1
            if balance < 0 or BLOCK_KEYWORD_PATTERN.match(line) or BLOCK_CALL_SHAPE_PATTERN.match(line):
                start = i
                break

        if start is None:
            start = max(0, line_index - max_lines // 2)

        end = start
        balance = 0
        for i in range(start, min(len(lines), start + max_lines)):
            line = lines[i]
            balance += line.count("{") - line.count("}")
            end = i
            if balance == 0 and i > line_index and "}" in line:
                break

        return start, min(end, start + max_lines - 1)

    async def load_files_from_search_results(self, results: Sequence[FileSearchResult]) -> List[LoadedFile]:
        """
        按大小加载搜索结果文件 / Load search hits for the prompt.

        Files at or under the small-file threshold are loaded whole so full-file
        edits stay possible; larger files keep only their snippets plus a hint
        to request specific line ranges.
        """
        loaded: List[LoadedFile] = []
        for result in results:
            try:
                content = await self.files.read_text(result.relative_path)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load %s: %s", result.relative_path, e)
                continue

            total = len(content.splitlines())
            if total <= self.small_file_threshold:
                loaded.append(LoadedFile(
                    path=result.path,
                    relative_path=result.relative_path,
                    total_lines=total,
                    loaded_completely=True,
                    content=content,
                    matches=list(result.matches),
                    message=f"Complete file ({total} lines)",
                ))
            else:
                loaded.append(LoadedFile(
                    path=result.path,
                    relative_path=result.relative_path,
                    total_lines=total,
                    loaded_completely=False,
                    matches=list(result.matches),
                    message=f"Large file ({total} lines) - use <read_lines> to load specific sections",
                ))
        return loaded

    async def read_line_range(self, path: str, start_line: int, end_line: int) -> LineRange:
        """
        读取 1 起闭区间行范围 / Read an inclusive 1-indexed line range.

        The range is clamped to the file.

        Raises:
            LineRangeError: start > end，或 start 超出文件末尾
        """
        relative = to_relative_posix(path)
        start_line = int(start_line)
        end_line = int(end_line)
        if start_line > end_line:
            raise LineRangeError(f"Invalid line range {start_line}-{end_line}: start is after end")

        lines = await self._read_lines(relative)
        start = max(0, start_line - 1)
        end = min(len(lines) - 1, end_line - 1)
        if start >= len(lines):
            raise LineRangeError(
                f"Start line {start_line} is beyond end of file ({len(lines)} lines)"
            )

        selected = lines[start:end + 1]
        return LineRange(
            path=relative,
            start_line=start + 1,
            end_line=end + 1,
            total_lines=len(lines),
            content="\n".join(selected),
            lines=selected,
        )

    # ========== 格式化 (Formatting) ==========

    def format_search_results(self, loaded_files: Sequence[LoadedFile]) -> str:
        """渲染搜索结果给模型 / Render loaded search results for the model."""
        parts = ["SEARCH RESULTS:\n"]
        for file in loaded_files:
            parts.append(f"File: {file.relative_path}")
            if file.loaded_completely:
                parts.append(f"{file.message}\n")
                parts.append(f"--- {file.relative_path} ---\n{file.content}\n")
            else:
                parts.append(file.message)
                parts.append(f"Matches: {len(file.matches)}\n")
                for match in file.matches[:self.max_snippets_per_file]:
                    body = "\n".join(f"    {line}" for line in match.snippet.split("\n"))
                    parts.append(
                        f"  [SNIPPET] Lines {match.start_line}-{match.end_line} (keyword: \"{match.keyword}\"):\n"
                        f"  This is a PREVIEW only, not complete code:\n\n{body}\n\n  [END SNIPPET]\n"
                    )
                parts.append(
                    "IMPORTANT: The snippets above are previews to help you locate relevant code.\n"
                    "To get complete context for editing, use: "
                    f"<read_lines><path>{file.relative_path}</path><start>LINE</start><end>LINE</end></read_lines>"
                )
            parts.append("---\n")
        return "\n".join(parts)

    async def format_line_ranges(self, requests: Iterable[Tuple[str, int, int]]) -> str:
        """
        读取并渲染多个行范围 / Read and render several line ranges.

        A failing request renders as an error line instead of raising.
        """
        parts = ["REQUESTED FILE SECTIONS:\n"]
        for path, start, end in requests:
            try:
                result = await self.read_line_range(path, start, end)
            except (LineRangeError, OSError, ValueError) as e:
                parts.append(f"ERROR reading {path} lines {start}-{end}: {e}\n")
                continue
            parts.append(f"File: {result.path}")
            parts.append(f"Lines {result.start_line}-{result.end_line} (of {result.total_lines} total)\n")
            parts.append(result.content)
            parts.append("\n---\n")
        return "\n".join(parts)

    # ========== 持久化 (Persistence) ==========

    def to_document(self) -> IndexDocument:
        return IndexDocument(
            project_root=str(self.project_root),
            last_indexed=self.last_indexed,
            files=list(self.entries.values()),
        )

    def load_document(self, document: IndexDocument) -> None:
        """Replace in-memory state with a persisted index."""
        self.entries = {to_relative_posix(e.path): e for e in document.files}
        self.last_indexed = document.last_indexed
