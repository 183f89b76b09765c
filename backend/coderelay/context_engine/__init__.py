"""
Context Engine Module / 上下文引擎模块
Token counting, budgeting, conversation history and prompt assembly
Token 计数、预算分配、对话历史与提示词组装
"""

# 数据模型
from .models import (
    ConversationMessage,
    FileSearchResult,
    LineRange,
    LoadedFile,
    MessageRole,
    PromptAssembly,
    SearchMatch,
    ToolCall,
    ToolDefinition,
)

# 计数与预算
from .token_counter import TokenCounter
from .budget_manager import ContextBudgetManager, TokenBudget, allocate_budget, available_tokens

# 对话账本
from .conversation_ledger import ConversationLedger

# 组装与降级
from .degradation_guard import DegradationGuard
from .prompt_assembler import PromptAssembler

__all__ = [
    "ConversationMessage",
    "FileSearchResult",
    "LineRange",
    "LoadedFile",
    "MessageRole",
    "PromptAssembly",
    "SearchMatch",
    "ToolCall",
    "ToolDefinition",
    "TokenCounter",
    "ContextBudgetManager",
    "TokenBudget",
    "allocate_budget",
    "available_tokens",
    "ConversationLedger",
    "DegradationGuard",
    "PromptAssembler",
]
