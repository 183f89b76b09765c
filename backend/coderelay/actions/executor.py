# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  动作执行器 - 按提取顺序依次执行编辑、创建、删除与任务更新，首个失败即中止
  Action Executor - Applies edits, creates, deletes and task updates sequentially in
  extraction order; the first failure aborts the rest of the batch.

  已执行的动作不会回滚 / Applied actions are not rolled back.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from coderelay.actions.extractor import describe_action, validate_action
from coderelay.codebase.indexer import CodebaseIndexer
from coderelay.exceptions import ActionExecutionError, PathResolutionError
from coderelay.schemas.action import MUTATION_KINDS
from coderelay.schemas.task import TaskStatus
from coderelay.services.file_service import FileService
from coderelay.services.task_list import TaskList
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

PREVIEW_CHARS = 200


@dataclass
class ActionResult:
    """单个动作的执行结果 / Outcome of one applied action"""
    action: Any
    message: str
    path: Optional[str] = None


@dataclass
class ExecutionReport:
    """批处理执行报告 / Outcome of a fully applied batch"""
    results: List[ActionResult] = field(default_factory=list)

    @property
    def applied(self) -> List[Any]:
        return [r.action for r in self.results]

    @property
    def changed_paths(self) -> List[str]:
        return [r.path for r in self.results if r.path]


class ActionExecutor:
    """
    动作执行器 / Action executor

    Attributes:
        files (FileService): 文件读写 / File primitives
        indexer (CodebaseIndexer): 用于路径解析与增量索引 / Path resolution and index upkeep
        tasks (TaskList): 任务列表 / Task list receiving task updates
    """

    def __init__(self, files: FileService, indexer: CodebaseIndexer, tasks: TaskList):
        self.files = files
        self.indexer = indexer
        self.tasks = tasks

    async def execute(self, actions: Sequence[Any]) -> ExecutionReport:
        """
        顺序执行一批动作

        Only mutation actions are applied; request actions are ignored.

        Raises:
            ActionExecutionError: 首个失败的动作，附带已执行与跳过的动作
        """
        batch = [a for a in actions if a.kind in MUTATION_KINDS]
        report = ExecutionReport()

        for position, action in enumerate(batch):
            try:
                result = await self.apply(action)
            except (PathResolutionError, OSError, ValueError) as e:
                skipped = batch[position + 1:]
                logger.error(
                    "Action failed (%s): %s; %d applied, %d skipped",
                    describe_action(action), e, len(report.results), len(skipped),
                )
                raise ActionExecutionError(
                    f"Failed to {describe_action(action)}: {e}",
                    failed=action,
                    applied=report.applied,
                    skipped=skipped,
                ) from e

            report.results.append(result)
            logger.info("Applied %s", describe_action(action))

        return report

    async def apply(self, action: Any) -> ActionResult:
        ok, error = validate_action(action)
        if not ok:
            raise ValueError(error)

        kind = action.kind
        if kind == "edit":
            return await self._edit(action)
        if kind == "create":
            return await self._create(action)
        if kind == "delete":
            return await self._delete(action)
        if kind == "task_update":
            task = self.tasks.apply_update(action.description, action.status)
            return ActionResult(action=action, message=f"Task {TaskStatus(task.status).value}: {task.description}")
        raise ValueError(f"Not an executable action: {kind}")

    def resolve_existing(self, path: str) -> str:
        """
        解析已存在的文件路径

        Falls back to basename resolution against the index when the path
        does not exist as given.
        """
        if self.files.exists(path):
            return self.files.relative(self.files.resolve(path))
        return self.indexer.find_file_by_name(path)

    async def _edit(self, action: Any) -> ActionResult:
        path = self.resolve_existing(action.path)
        content = await self.files.read_text(path)

        if action.old_text not in content:
            preview = action.old_text
            if len(preview) > PREVIEW_CHARS:
                preview = preview[:PREVIEW_CHARS] + "...[truncated]"
            raise ValueError(
                f"Text to replace not found in {path}.\n"
                f"  Old text length: {len(action.old_text)} chars\n"
                f"  File length: {len(content)} chars\n"
                f"  Old text preview: {preview}\n"
                "  Make sure the old text exactly matches the file content (including whitespace)."
            )

        await self.files.write_text(path, content.replace(action.old_text, action.new_text, 1))
        await self.indexer.update_index(path)
        return ActionResult(action=action, message=f"Edited {path}", path=path)

    async def _create(self, action: Any) -> ActionResult:
        await self.files.write_text(action.path, action.content)
        path = self.files.relative(self.files.resolve(action.path))
        await self.indexer.update_index(path)
        return ActionResult(action=action, message=f"Created {path}", path=path)

    async def _delete(self, action: Any) -> ActionResult:
        path = self.resolve_existing(action.path)
        await self.files.delete(path)
        self.indexer.remove_from_index(path)
        message = f"Deleted {path}" + (f" ({action.reason})" if action.reason else "")
        return ActionResult(action=action, message=message, path=path)
