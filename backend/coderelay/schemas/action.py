"""
Canonical Action Models / 规范动作模型
Both output grammars are parsed into this one discriminated union.
两种输出语法都解析为这一组动作。
"""

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field

from coderelay.schemas.task import TaskStatus


class EditAction(BaseModel):
    """Replace exact text inside an existing file / 编辑文件"""

    kind: Literal["edit"] = "edit"
    path: str
    old_text: str
    new_text: str


class CreateAction(BaseModel):
    """Create (or overwrite) a file / 创建文件"""

    kind: Literal["create"] = "create"
    path: str
    content: str


class DeleteAction(BaseModel):
    """Delete a file / 删除文件"""

    kind: Literal["delete"] = "delete"
    path: str
    reason: str = ""


class TaskUpdateAction(BaseModel):
    """Add or complete a task / 更新任务"""

    kind: Literal["task_update"] = "task_update"
    description: str
    status: TaskStatus = TaskStatus.PENDING


class SearchRequest(BaseModel):
    """Ask for a keyword search over the codebase / 请求代码搜索"""

    kind: Literal["search"] = "search"
    keywords: List[str] = Field(default_factory=list)


class ReadRangeRequest(BaseModel):
    """Ask for a 1-indexed inclusive line range / 请求读取行范围"""

    kind: Literal["read_range"] = "read_range"
    path: str
    start_line: int
    end_line: int


class WebSearchRequest(BaseModel):
    """Ask for a web search / 请求网络搜索"""

    kind: Literal["web_search"] = "web_search"
    query: str


class WebFetchRequest(BaseModel):
    """Ask for a page fetch / 请求抓取网页"""

    kind: Literal["web_fetch"] = "web_fetch"
    url: str


Action = Annotated[
    Union[
        EditAction,
        CreateAction,
        DeleteAction,
        TaskUpdateAction,
        SearchRequest,
        ReadRangeRequest,
        WebSearchRequest,
        WebFetchRequest,
    ],
    Field(discriminator="kind"),
]

# Kinds that mutate the project and need user confirmation
MUTATION_KINDS = frozenset({"edit", "create", "delete", "task_update"})
# Kinds resolved through a follow-up model round
REQUEST_KINDS = frozenset({"search", "read_range", "web_search", "web_fetch"})
