"""
Context Engine Models / 上下文引擎数据模型
Core data structures shared by the ledger, the assembler and the index
账本、组装器与索引共享的核心数据结构
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class MessageRole(str, Enum):
    """消息角色"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConversationMessage:
    """
    单条对话消息
    A single conversation message, immutable once appended
    """
    role: str
    content: str
    timestamp: str = field(default_factory=utc_now_iso)

    def to_chat(self) -> Dict[str, str]:
        """Chat-completion form (role + content only)"""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMessage":
        return cls(
            role=str(data.get("role") or MessageRole.USER.value),
            content=str(data.get("content") or ""),
            timestamp=str(data.get("timestamp") or utc_now_iso()),
        )


@dataclass
class SearchMatch:
    """
    内容搜索命中
    One keyword hit inside a file; all line numbers are 1-indexed
    """
    keyword: str
    line_number: int
    snippet: str
    start_line: int
    end_line: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyword": self.keyword,
            "line_number": self.line_number,
            "snippet": self.snippet,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass
class FileSearchResult:
    """
    单个文件的内容搜索结果
    Content-search result for one file
    """
    path: str
    relative_path: str
    matches: List[SearchMatch] = field(default_factory=list)

    @property
    def total_matches(self) -> int:
        return len(self.matches)


@dataclass
class LoadedFile:
    """
    为提示词加载的文件
    A file loaded for the prompt: full content when small, snippets when large
    """
    path: str
    relative_path: str
    total_lines: int
    loaded_completely: bool
    content: Optional[str] = None
    matches: List[SearchMatch] = field(default_factory=list)
    message: str = ""


@dataclass
class LineRange:
    """
    按行读取结果
    Result of a 1-indexed inclusive line-range read
    """
    path: str
    start_line: int
    end_line: int
    total_lines: int
    content: str
    lines: List[str] = field(default_factory=list)


@dataclass
class PromptAssembly:
    """
    组装完成的提示词
    Ordered message list plus metadata, built fresh per query
    """
    messages: List[Dict[str, str]]
    total_tokens: int
    available_tokens: int
    budget: Dict[str, int] = field(default_factory=dict)
    files_included: int = 0
    history_messages: int = 0
    has_compressed_history: bool = False
    was_reduced: bool = False
    reductions: List[str] = field(default_factory=list)

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "total_tokens": self.total_tokens,
            "available_tokens": self.available_tokens,
            "budget": dict(self.budget),
            "files_included": self.files_included,
            "history_messages": self.history_messages,
            "has_compressed_history": self.has_compressed_history,
            "was_reduced": self.was_reduced,
            "reductions": list(self.reductions),
        }


@dataclass
class ToolDefinition:
    """
    工具定义 - 告诉模型能做什么
    Tool definition - tells the model which calls are available
    """
    name: str
    description: str
    parameters: Dict[str, Any]

    def to_function_schema(self) -> Dict[str, Any]:
        """Convert to OpenAI function calling format"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_context_string(self) -> str:
        return f"**{self.name}**: {self.description}"


@dataclass
class ToolCall:
    """
    模型发起的函数调用
    A function call emitted by the model; ``arguments`` is the raw JSON text
    """
    name: str
    arguments: str = ""
    id: str = ""

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }
