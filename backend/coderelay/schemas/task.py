"""
Task List Models / 任务列表数据模型
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    """Task status / 任务状态"""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class Task(BaseModel):
    """Single task / 单个任务"""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    description: str = Field(..., description="Task description / 任务描述")
    status: TaskStatus = Field(TaskStatus.PENDING, description="Task status / 任务状态")
    priority: str = Field("normal", description="low | normal | high")
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat(), alias="createdAt")
    completed_at: Optional[str] = Field(None, alias="completedAt")
    notes: str = ""


class TaskListDocument(BaseModel):
    """Persisted task list / 持久化的任务列表"""

    model_config = ConfigDict(populate_by_name=True)

    tasks: List[Task] = Field(default_factory=list)
    last_updated: Optional[str] = Field(None, alias="lastUpdated")
