"""
Tool Definitions / 函数调用工具定义
Function-call names the model may use, and the action kind each one maps to
模型可调用的函数名，以及每个函数对应的动作类型
"""

from typing import Any, Dict, List

from coderelay.context_engine.models import ToolDefinition

# 函数名 → 动作类型 / Call name to canonical action kind
TOOL_TO_ACTION_KIND: Dict[str, str] = {
    "search_code": "search",
    "read_file_lines": "read_range",
    "edit_file": "edit",
    "create_file": "create",
    "delete_file": "delete",
    "update_task": "task_update",
    "web_search": "web_search",
    "fetch_url": "web_fetch",
}

# 函数名 → 标签块名 / Call name to the equivalent tagged block
TOOL_TO_TAG: Dict[str, str] = {
    "search_code": "search",
    "read_file_lines": "read_lines",
    "edit_file": "file_edit",
    "create_file": "file_create",
    "delete_file": "file_delete",
    "update_task": "task_update",
    "web_search": "web_search",
    "fetch_url": "web_fetch",
}

CODE_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="search_code",
        description=(
            "Search the codebase by keywords. Returns matching files and code snippets. "
            "Use this first whenever you need to look at code."
        ),
        parameters={
            "type": "object",
            "properties": {
                "keywords": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Keywords to search for, e.g. ['authentication', 'login']",
                },
            },
            "required": ["keywords"],
        },
    ),
    ToolDefinition(
        name="read_file_lines",
        description="Read a line range from a file when search results only showed snippets.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file"},
                "start_line": {"type": "integer", "description": "First line (1-indexed)"},
                "end_line": {"type": "integer", "description": "Last line (inclusive)"},
            },
            "required": ["path", "start_line", "end_line"],
        },
    ),
    ToolDefinition(
        name="edit_file",
        description=(
            "Replace old text with new text in a file. old_text must match the file exactly, "
            "including indentation."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to edit"},
                "old_text": {"type": "string", "description": "Exact text to replace"},
                "new_text": {"type": "string", "description": "Replacement text"},
                "description": {"type": "string", "description": "What this edit does"},
            },
            "required": ["path", "old_text", "new_text", "description"],
        },
    ),
    ToolDefinition(
        name="create_file",
        description="Create a new file. Only when the user asks for a new file.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Where to create the file"},
                "content": {"type": "string", "description": "Complete file content"},
                "description": {"type": "string", "description": "What this file does"},
            },
            "required": ["path", "content", "description"],
        },
    ),
    ToolDefinition(
        name="delete_file",
        description="Delete a file. Only when the user explicitly asks for it.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to delete"},
                "reason": {"type": "string", "description": "Why the file is deleted"},
            },
            "required": ["path", "reason"],
        },
    ),
    ToolDefinition(
        name="update_task",
        description="Add a task or mark one completed to track multi-step work.",
        parameters={
            "type": "object",
            "properties": {
                "description": {"type": "string", "description": "Task description"},
                "status": {
                    "type": "string",
                    "enum": ["pending", "completed"],
                    "description": "'pending' adds the task, 'completed' marks it done",
                },
            },
            "required": ["description", "status"],
        },
    ),
]

WEB_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="web_search",
        description="Search the web for documentation or error messages.",
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Search query"}},
            "required": ["query"],
        },
    ),
    ToolDefinition(
        name="fetch_url",
        description="Fetch the text content of a web page.",
        parameters={
            "type": "object",
            "properties": {"url": {"type": "string", "description": "Absolute URL"}},
            "required": ["url"],
        },
    ),
]


def get_tool_definitions(include_web: bool = False) -> List[ToolDefinition]:
    return CODE_TOOLS + WEB_TOOLS if include_web else list(CODE_TOOLS)


def get_tool_schemas(include_web: bool = False) -> List[Dict[str, Any]]:
    """OpenAI function-calling form of the available tools"""
    return [tool.to_function_schema() for tool in get_tool_definitions(include_web)]
