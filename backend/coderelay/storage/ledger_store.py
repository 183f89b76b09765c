# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  账本存储 - 任务列表、对话历史与代码库索引三份 JSON 文档的读写
  Ledger Storage - Reads and wholesale rewrites of the task list, conversation history
  and codebase index documents. An absent document loads as an empty default.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from coderelay.exceptions import StorageError
from coderelay.schemas.conversation import ConversationDocument
from coderelay.schemas.index import IndexDocument
from coderelay.schemas.task import TaskListDocument
from coderelay.storage.base import BaseStorage
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

TASK_LIST_FILE = "task_list.json"
CONVERSATION_FILE = "conversation_history.json"
INDEX_FILE = "codebase_index.json"
INSTRUCTIONS_FILE = "INSTRUCTIONS.md"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LedgerStorage(BaseStorage):
    """File-based storage for the three ledger documents / 三份账本文档的文件存储。"""

    @property
    def task_list_path(self) -> Path:
        return self.get_workspace_path(TASK_LIST_FILE)

    @property
    def conversation_path(self) -> Path:
        return self.get_workspace_path(CONVERSATION_FILE)

    @property
    def index_path(self) -> Path:
        return self.get_workspace_path(INDEX_FILE)

    @property
    def instructions_path(self) -> Path:
        return self.get_workspace_path(INSTRUCTIONS_FILE)

    def ensure_workspace(self) -> Path:
        self.ensure_dir(self.workspace)
        return self.workspace

    async def read_task_list(self) -> TaskListDocument:
        data = await self.read_json(self.task_list_path)
        return self._validate(TaskListDocument, data, TASK_LIST_FILE)

    async def write_task_list(self, document: TaskListDocument) -> None:
        document.last_updated = _now()
        await self.write_json(self.task_list_path, document.model_dump(mode="json", by_alias=True))

    async def read_conversation(self) -> ConversationDocument:
        data = await self.read_json(self.conversation_path)
        return self._validate(ConversationDocument, data, CONVERSATION_FILE)

    async def write_conversation(self, document: ConversationDocument) -> None:
        document.last_saved = _now()
        await self.write_json(self.conversation_path, document.model_dump(mode="json", by_alias=True))

    async def read_index(self) -> IndexDocument:
        data = await self.read_json(self.index_path)
        return self._validate(IndexDocument, data, INDEX_FILE)

    async def write_index(self, document: IndexDocument) -> None:
        await self.write_json(self.index_path, document.model_dump(mode="json", by_alias=True))

    async def read_instructions(self) -> Optional[str]:
        """Project-specific instructions, ``None`` when absent or blank."""
        text = await self.read_text(self.instructions_path)
        if text is None or not text.strip():
            return None
        return text.strip()

    @staticmethod
    def _validate(model, data, name: str):
        if data is None:
            return model()
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Malformed {name}: {e}") from e
