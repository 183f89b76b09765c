"""
Codebase Index Models / 代码库索引数据模型
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IndexEntry(BaseModel):
    """Symbol-table entry for one project file / 单个文件的符号表条目"""

    path: str = Field(..., description="Project-relative path (unique key) / 相对路径")
    size: int = Field(0, description="Size in bytes / 字节大小")
    modified: float = Field(0.0, description="Modification time (epoch seconds) / 修改时间")
    type: str = Field("", description="File extension tag / 文件类型")
    functions: List[str] = Field(default_factory=list, description="Function names / 函数名")
    classes: List[str] = Field(default_factory=list, description="Class names / 类名")
    imports: List[str] = Field(default_factory=list, description="Import targets / 导入目标")
    exports: List[str] = Field(default_factory=list, description="Exported names / 导出名")
    skipped: bool = Field(False, description="True when symbol extraction was skipped")
    reason: Optional[str] = Field(None, description="Why the file was skipped")

    @property
    def symbols(self) -> List[str]:
        return [*self.functions, *self.classes]


class IndexDocument(BaseModel):
    """Persisted codebase index / 持久化的代码库索引"""

    model_config = ConfigDict(populate_by_name=True)

    project_root: str = Field("", alias="projectRoot")
    last_indexed: Optional[str] = Field(None, alias="lastIndexed")
    files: List[IndexEntry] = Field(default_factory=list)
