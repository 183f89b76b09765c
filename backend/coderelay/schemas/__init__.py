"""
Pydantic Data Models / Pydantic 数据模型
Persisted ledger documents and the canonical action set / 持久化账本文档与规范动作
"""

from .index import IndexEntry, IndexDocument
from .conversation import MessageRecord, HistoryRecord, LedgerStats, ConversationDocument
from .task import Task, TaskStatus, TaskListDocument
from .action import (
    Action,
    EditAction,
    CreateAction,
    DeleteAction,
    TaskUpdateAction,
    SearchRequest,
    ReadRangeRequest,
    WebSearchRequest,
    WebFetchRequest,
    MUTATION_KINDS,
    REQUEST_KINDS,
)

__all__ = [
    "IndexEntry",
    "IndexDocument",
    "MessageRecord",
    "HistoryRecord",
    "LedgerStats",
    "ConversationDocument",
    "Task",
    "TaskStatus",
    "TaskListDocument",
    "Action",
    "EditAction",
    "CreateAction",
    "DeleteAction",
    "TaskUpdateAction",
    "SearchRequest",
    "ReadRangeRequest",
    "WebSearchRequest",
    "WebFetchRequest",
    "MUTATION_KINDS",
    "REQUEST_KINDS",
]
