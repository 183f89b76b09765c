# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  任务列表 - 提供待办摘要与任务更新动作的落地
  Task List - Pending-task summary for the prompt and the target of task-update actions.
"""

from datetime import datetime, timezone
from typing import List, Optional

from coderelay.schemas.task import Task, TaskListDocument, TaskStatus
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

NO_PENDING_TASKS = "No pending tasks."


class TaskList:
    """
    任务列表 / Task list bookkeeping

    Attributes:
        tasks (List[Task]): 所有任务 / All tasks, insertion order
    """

    def __init__(self, tasks: Optional[List[Task]] = None):
        self.tasks: List[Task] = list(tasks or [])

    @classmethod
    def from_document(cls, document: TaskListDocument) -> "TaskList":
        return cls(document.tasks)

    def to_document(self) -> TaskListDocument:
        return TaskListDocument(tasks=list(self.tasks))

    def add_task(self, description: str, priority: str = "normal", status: TaskStatus = TaskStatus.PENDING) -> Task:
        task = Task(description=description.strip(), priority=priority, status=status)
        self.tasks.append(task)
        return task

    def complete_by_description(self, description: str) -> Optional[Task]:
        """
        按描述完成任务 / Complete the first unfinished task whose description
        contains ``description`` (case-insensitive).
        """
        needle = description.strip().lower()
        for task in self.tasks:
            if task.status != TaskStatus.COMPLETED.value and needle in task.description.lower():
                task.status = TaskStatus.COMPLETED.value
                task.completed_at = datetime.now(timezone.utc).isoformat()
                return task
        return None

    def apply_update(self, description: str, status: TaskStatus) -> Task:
        """
        应用任务更新动作 / Apply a task-update action.

        ``completed`` completes a matching task, or records a completed task
        when none matches; other statuses add a new task.
        """
        status = TaskStatus(status)
        if status == TaskStatus.COMPLETED:
            task = self.complete_by_description(description)
            if task is not None:
                return task
        return self.add_task(description, status=status)

    def pending(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.PENDING.value]

    def in_progress(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.IN_PROGRESS.value]

    def completed(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.COMPLETED.value]

    def clear_completed(self) -> int:
        before = len(self.tasks)
        self.tasks = [t for t in self.tasks if t.status != TaskStatus.COMPLETED.value]
        return before - len(self.tasks)

    def get_task_list_for_prompt(self) -> str:
        """渲染待办摘要 / Render in-progress and pending tasks for the prompt."""
        in_progress = self.in_progress()
        pending = self.pending()
        if not in_progress and not pending:
            return NO_PENDING_TASKS

        lines = ["CURRENT TASKS:"]
        if in_progress:
            lines.append("In Progress:")
            lines.extend(f"- {t.description}" for t in in_progress)
        if pending:
            lines.append("Pending:")
            lines.extend(f"- {t.description}" for t in pending)
        return "\n".join(lines)

    def get_stats(self) -> dict:
        return {
            "total": len(self.tasks),
            "pending": len(self.pending()),
            "in_progress": len(self.in_progress()),
            "completed": len(self.completed()),
        }
