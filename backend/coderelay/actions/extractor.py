# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  动作提取器 - 将两种模型输出语法（标签块 / 函数调用）解析为同一组规范动作
  Action Extractor - Parses both model output grammars (tagged blocks and function calls)
  into one canonical action list, plus the plain-text remainder for display.

实现方式 / Implementation:
  - 两种语法各自是无状态的纯函数 / each grammar is a pure function without shared state
  - 动作按文档顺序输出；所有搜索关键词合并为一个搜索请求
    actions come out in document order; all search keywords merge into one request
  - 格式错误的块或参数被跳过并记录日志 / malformed blocks and arguments are skipped and logged
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from coderelay.actions.tools import TOOL_TO_ACTION_KIND
from coderelay.context_engine.models import ToolCall
from coderelay.schemas.action import (
    MUTATION_KINDS,
    Action,
    CreateAction,
    DeleteAction,
    EditAction,
    ReadRangeRequest,
    SearchRequest,
    TaskUpdateAction,
    WebFetchRequest,
    WebSearchRequest,
)
from coderelay.schemas.task import TaskStatus
from coderelay.utils.llm_output import parse_tool_arguments
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

_FLAGS = re.IGNORECASE

FILE_EDIT_RE = re.compile(
    r"<file_edit>\s*<path>(.*?)</path>\s*<operation>(.*?)</operation>\s*"
    r"<old>([\s\S]*?)</old>\s*<new>([\s\S]*?)</new>\s*</file_edit>",
    _FLAGS,
)
FILE_CREATE_RE = re.compile(r"<file_create>\s*<path>(.*?)</path>\s*<content>([\s\S]*?)</content>\s*</file_create>", _FLAGS)
FILE_DELETE_RE = re.compile(r"<file_delete>\s*<path>(.*?)</path>\s*(?:<reason>([\s\S]*?)</reason>\s*)?</file_delete>", _FLAGS)
TASK_UPDATE_RE = re.compile(r"<task_update>([\s\S]*?)</task_update>", _FLAGS)
QUESTION_RE = re.compile(r"<question>([\s\S]*?)</question>", _FLAGS)
SEARCH_RE = re.compile(r"<search>([\s\S]*?)</search>", _FLAGS)
READ_LINES_RE = re.compile(
    r"<read_lines>\s*<path>(.*?)</path>\s*<start>(.*?)</start>\s*<end>(.*?)</end>\s*</read_lines>",
    _FLAGS,
)
WEB_SEARCH_RE = re.compile(r"<web_search>([\s\S]*?)</web_search>", _FLAGS)
WEB_FETCH_RE = re.compile(r"<web_fetch>([\s\S]*?)</web_fetch>", _FLAGS)

BLOCK_PATTERNS = (
    FILE_EDIT_RE,
    FILE_CREATE_RE,
    FILE_DELETE_RE,
    TASK_UPDATE_RE,
    QUESTION_RE,
    SEARCH_RE,
    READ_LINES_RE,
    WEB_SEARCH_RE,
    WEB_FETCH_RE,
)
ANY_TAG_RE = re.compile(r"<[^>]+>")
KEYWORD_SPLIT_RE = re.compile(r"[,\n]")

# 任务行前缀 → 状态 / Task line prefixes, checked in order
TASK_LINE_PREFIXES: Tuple[Tuple[str, TaskStatus], ...] = (
    ("- DONE:", TaskStatus.COMPLETED),
    ("- ✓", TaskStatus.COMPLETED),
    ("- TODO:", TaskStatus.PENDING),
    ("- [ ]", TaskStatus.PENDING),
    ("- IN_PROGRESS:", TaskStatus.IN_PROGRESS),
    ("- [~]", TaskStatus.IN_PROGRESS),
)

_ACTION_ADAPTER = TypeAdapter(Action)


@dataclass
class ParsedResponse:
    """
    解析结果 / One model response in canonical form

    Attributes:
        actions: 规范动作（文档顺序） / Canonical actions in document order
        questions: 模型向用户提出的问题 / Questions for the user
        plain_text: 去除所有识别块后的文本 / Text with every recognized block removed
    """
    actions: List[Any] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    plain_text: str = ""

    @property
    def has_actions(self) -> bool:
        return any(action.kind in MUTATION_KINDS for action in self.actions)

    @property
    def mutations(self) -> List[Any]:
        return [a for a in self.actions if a.kind in MUTATION_KINDS]

    @property
    def search_keywords(self) -> List[str]:
        keywords: List[str] = []
        for action in self.actions:
            if action.kind == "search":
                keywords.extend(action.keywords)
        return keywords

    @property
    def read_requests(self) -> List[ReadRangeRequest]:
        return [a for a in self.actions if a.kind == "read_range"]

    @property
    def web_requests(self) -> List[Any]:
        return [a for a in self.actions if a.kind in ("web_search", "web_fetch")]

    @property
    def needs_follow_up(self) -> bool:
        return bool(self.search_keywords or self.read_requests or self.web_requests)

    def of_kind(self, kind: str) -> List[Any]:
        return [a for a in self.actions if a.kind == kind]


# ========== 路径规范化 (Path Normalization) ==========

def clean_path(path: Optional[str]) -> str:
    """
    规范化模型给出的路径

    Strips surrounding whitespace, decorative dashes and one pair of quotes.

    Example:
        >>> clean_path('  --- "src/app.py" ---  ')
        'src/app.py'
    """
    if not path:
        return ""
    cleaned = path.strip()
    cleaned = re.sub(r"^---\s*", "", cleaned)
    cleaned = re.sub(r"\s*---$", "", cleaned)
    cleaned = re.sub(r"^[\"']", "", cleaned)
    cleaned = re.sub(r"[\"']$", "", cleaned)
    return cleaned.strip()


def split_keywords(text: str) -> List[str]:
    return [k.strip() for k in KEYWORD_SPLIT_RE.split(text or "") if k.strip()]


def parse_task_lines(block: str) -> List[TaskUpdateAction]:
    """Each recognized list line in a task_update block becomes one update."""
    updates: List[TaskUpdateAction] = []
    for raw in block.splitlines():
        line = raw.strip()
        if not line.startswith("-"):
            continue
        for prefix, status in TASK_LINE_PREFIXES:
            if line.upper().startswith(prefix.upper()):
                description = line[len(prefix):].strip()
                break
        else:
            if not line.startswith("- "):
                continue
            status = TaskStatus.PENDING
            description = line[2:].strip()
        if description:
            updates.append(TaskUpdateAction(description=description, status=status))
    return updates


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def finalize_action(action: Any, source: str) -> Optional[Any]:
    """
    两种语法共用的规范化与校验 / Normalization and validation shared by both grammars.

    Edit text is stripped of surrounding whitespace; an action that fails
    :func:`validate_action` is dropped (None).
    """
    if action.kind == "edit":
        action = action.model_copy(update={"old_text": action.old_text.strip(), "new_text": action.new_text.strip()})
    ok, error = validate_action(action)
    if not ok:
        logger.warning("Skipping %s from %s: %s", action.kind, source, error)
        return None
    return action


# ========== 语法 A：标签块 (Grammar A: Tagged Blocks) ==========

def parse_tagged(text: Optional[str]) -> ParsedResponse:
    """
    解析标签块语法

    Unknown or malformed blocks are ignored; extraction continues over the
    rest of the response.
    """
    text = text or ""
    positioned: List[Tuple[int, Any]] = []

    for m in FILE_EDIT_RE.finditer(text):
        path = clean_path(m.group(1))
        operation = m.group(2).strip().lower()
        if not path or operation != "replace":
            logger.debug("Skipping file_edit block (path=%r, operation=%r)", path, operation)
            continue
        positioned.append((m.start(), EditAction(path=path, old_text=m.group(3), new_text=m.group(4))))

    for m in FILE_CREATE_RE.finditer(text):
        path = clean_path(m.group(1))
        if path:
            positioned.append((m.start(), CreateAction(path=path, content=m.group(2))))

    for m in FILE_DELETE_RE.finditer(text):
        path = clean_path(m.group(1))
        if path:
            positioned.append((m.start(), DeleteAction(path=path, reason=(m.group(2) or "").strip())))

    for m in TASK_UPDATE_RE.finditer(text):
        positioned.extend((m.start(), update) for update in parse_task_lines(m.group(1)))

    keywords: List[str] = []
    first_search: Optional[int] = None
    for m in SEARCH_RE.finditer(text):
        found = split_keywords(m.group(1))
        if found and first_search is None:
            first_search = m.start()
        keywords.extend(found)
    if keywords:
        positioned.append((first_search, SearchRequest(keywords=keywords)))

    for m in READ_LINES_RE.finditer(text):
        path = clean_path(m.group(1))
        start, end = _to_int(m.group(2)), _to_int(m.group(3))
        if not path or start is None or end is None:
            logger.debug("Skipping malformed read_lines block: %r", m.group(0)[:200])
            continue
        positioned.append((m.start(), ReadRangeRequest(path=path, start_line=start, end_line=end)))

    for m in WEB_SEARCH_RE.finditer(text):
        query = m.group(1).strip()
        if query:
            positioned.append((m.start(), WebSearchRequest(query=query)))

    for m in WEB_FETCH_RE.finditer(text):
        url = m.group(1).strip()
        if url:
            positioned.append((m.start(), WebFetchRequest(url=url)))

    positioned.sort(key=lambda item: item[0])
    questions = [q.strip() for q in QUESTION_RE.findall(text) if q.strip()]
    actions = [finalize_action(action, "tagged block") for _, action in positioned]

    return ParsedResponse(
        actions=[action for action in actions if action is not None],
        questions=questions,
        plain_text=extract_plain_text(text),
    )


def extract_plain_text(text: Optional[str]) -> str:
    """去除所有识别块与残留标签后的文本 / Text with recognized blocks and stray tags removed."""
    remainder = text or ""
    for pattern in BLOCK_PATTERNS:
        remainder = pattern.sub("", remainder)
    remainder = ANY_TAG_RE.sub("", remainder)
    remainder = re.sub(r"\n{3,}", "\n\n", remainder)
    return remainder.strip()


# ========== 语法 B：函数调用 (Grammar B: Function Calls) ==========

def tool_call_to_action(name: str, args: Dict[str, Any]) -> Optional[Any]:
    """
    将一个函数调用映射为一个规范动作

    Returns None for unknown names or arguments that do not fit the action.
    """
    kind = TOOL_TO_ACTION_KIND.get(name)
    if kind is None:
        logger.warning("Unknown function call: %s", name)
        return None

    if kind == "search":
        raw = args.get("keywords") or []
        if isinstance(raw, str):
            raw = split_keywords(raw)
        payload = {"keywords": [str(k).strip() for k in raw if str(k).strip()]}
    elif kind == "read_range":
        payload = {
            "path": clean_path(args.get("path")),
            "start_line": _to_int(args.get("start_line")),
            "end_line": _to_int(args.get("end_line")),
        }
    elif kind == "edit":
        payload = {
            "path": clean_path(args.get("path")),
            "old_text": args.get("old_text"),
            "new_text": args.get("new_text"),
        }
    elif kind == "create":
        payload = {"path": clean_path(args.get("path")), "content": args.get("content")}
    elif kind == "delete":
        payload = {"path": clean_path(args.get("path")), "reason": args.get("reason") or ""}
    elif kind == "task_update":
        payload = {"description": (args.get("description") or "").strip(), "status": args.get("status") or "pending"}
    elif kind == "web_search":
        payload = {"query": (args.get("query") or "").strip()}
    else:
        payload = {"url": (args.get("url") or "").strip()}

    try:
        action = _ACTION_ADAPTER.validate_python({"kind": kind, **payload})
    except ValidationError as e:
        logger.warning("Skipping %s call with invalid arguments: %s", name, e.errors()[:1])
        return None

    return finalize_action(action, f"{name} call")


def parse_tool_calls(calls: Sequence[ToolCall], content: str = "") -> ParsedResponse:
    """
    解析函数调用语法

    Calls whose JSON arguments cannot be parsed are skipped; the rest of the
    calls are still extracted. All search calls merge into one request.
    """
    actions: List[Any] = []
    keywords: List[str] = []
    search_slot: Optional[int] = None

    for call in calls:
        args, error = parse_tool_arguments(call.arguments)
        if args is None:
            logger.warning("Failed to parse arguments of %s (%s): %r", call.name, error, str(call.arguments)[:200])
            continue
        action = tool_call_to_action(call.name, args)
        if action is None:
            continue
        if action.kind == "search":
            if search_slot is None:
                search_slot = len(actions)
                actions.append(None)
            keywords.extend(action.keywords)
            continue
        actions.append(action)

    if search_slot is not None:
        actions[search_slot] = SearchRequest(keywords=keywords)

    return ParsedResponse(actions=actions, questions=[], plain_text=extract_plain_text(content))


def merge(first: ParsedResponse, second: ParsedResponse) -> ParsedResponse:
    """Combine two parses; search keywords stay merged in one request."""
    combined = ParsedResponse(
        actions=[a for a in first.actions + second.actions if a.kind != "search"],
        questions=first.questions + second.questions,
        plain_text="\n\n".join(t for t in (first.plain_text, second.plain_text) if t),
    )
    keywords = first.search_keywords + second.search_keywords
    if keywords:
        combined.actions.insert(0, SearchRequest(keywords=keywords))
    return combined


# ========== 辅助 (Helpers) ==========

def has_actions(parsed: ParsedResponse) -> bool:
    return parsed.has_actions


def validate_action(action: Any) -> Tuple[bool, str]:
    """
    校验单个动作

    Returns:
        (是否有效, 错误描述)
    """
    kind = getattr(action, "kind", None)
    if kind in ("edit", "create", "delete", "read_range") and not action.path:
        return False, "Missing file path"
    if kind == "edit" and not action.old_text:
        return False, "Replace operation requires old text"
    if kind == "task_update" and not action.description:
        return False, "Missing task description"
    if kind == "search" and not action.keywords:
        return False, "Search needs at least one keyword"
    if kind == "read_range" and (action.start_line < 1 or action.end_line < action.start_line):
        return False, f"Invalid line range {action.start_line}-{action.end_line}"
    if kind == "web_search" and not action.query:
        return False, "Missing search query"
    if kind == "web_fetch" and not re.match(r"^https?://", action.url, _FLAGS):
        return False, f"Not an http(s) URL: {action.url}"
    if kind is None:
        return False, "Not an action"
    return True, ""


_SUMMARY_LABELS = (
    ("edit", "file edit(s)"),
    ("create", "file create(s)"),
    ("delete", "file delete(s)"),
    ("task_update", "task update(s)"),
)


def get_action_summary(parsed: ParsedResponse) -> str:
    """
    动作摘要

    Example:
        "2 file edit(s), 1 task update(s)"
    """
    parts = []
    for kind, label in _SUMMARY_LABELS:
        count = len(parsed.of_kind(kind))
        if count:
            parts.append(f"{count} {label}")
    if parsed.questions:
        parts.append(f"{len(parsed.questions)} question(s)")
    return ", ".join(parts) if parts else "No actions"


def describe_action(action: Any) -> str:
    kind = action.kind
    if kind == "edit":
        return f"edit {action.path}"
    if kind == "create":
        return f"create {action.path}"
    if kind == "delete":
        return f"delete {action.path}"
    if kind == "task_update":
        return f"task [{TaskStatus(action.status).value}] {action.description}"
    if kind == "search":
        return f"search {', '.join(action.keywords)}"
    if kind == "read_range":
        return f"read {action.path}:{action.start_line}-{action.end_line}"
    if kind == "web_search":
        return f"web search {action.query}"
    return f"fetch {action.url}"


def describe_actions(actions: Iterable[Any]) -> List[str]:
    return [describe_action(a) for a in actions]
