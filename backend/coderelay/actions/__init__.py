"""
Actions Module / 动作模块
Output grammars, canonical action extraction and batch execution
输出语法、规范动作提取与批量执行
"""

from .extractor import (
    ParsedResponse,
    clean_path,
    get_action_summary,
    has_actions,
    parse_tagged,
    parse_tool_calls,
    validate_action,
)
from .executor import ActionExecutor, ActionResult, ExecutionReport
from .tools import TOOL_TO_ACTION_KIND, get_tool_definitions, get_tool_schemas

__all__ = [
    "ParsedResponse",
    "clean_path",
    "get_action_summary",
    "has_actions",
    "parse_tagged",
    "parse_tool_calls",
    "validate_action",
    "ActionExecutor",
    "ActionResult",
    "ExecutionReport",
    "TOOL_TO_ACTION_KIND",
    "get_tool_definitions",
    "get_tool_schemas",
]
