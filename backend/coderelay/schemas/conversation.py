"""
Conversation Ledger Models / 对话账本数据模型
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageRecord(BaseModel):
    """Persisted conversation message / 持久化的对话消息"""

    role: Literal["system", "user", "assistant"] = Field(..., description="Message role")
    content: str = Field("", description="Message text")
    timestamp: Optional[str] = Field(None, description="ISO creation time")


class HistoryRecord(BaseModel):
    """Dual-track history: full window plus compressed summary"""

    model_config = ConfigDict(populate_by_name=True)

    full: List[MessageRecord] = Field(default_factory=list)
    compressed: str = Field("")
    active_window: List[MessageRecord] = Field(default_factory=list, alias="activeWindow")


class LedgerStats(BaseModel):
    """Ledger statistics snapshot / 账本统计"""

    model_config = ConfigDict(populate_by_name=True)

    message_count: int = Field(0, alias="messageCount")
    full_tokens: int = Field(0, alias="fullTokens")
    compressed_tokens: int = Field(0, alias="compressedTokens")
    has_compression: bool = Field(False, alias="hasCompression")
    compression_ratio: float = Field(0.0, alias="compressionRatio")


class ConversationDocument(BaseModel):
    """Persisted conversation history / 持久化的对话历史"""

    model_config = ConfigDict(populate_by_name=True)

    history: HistoryRecord = Field(default_factory=HistoryRecord)
    last_saved: Optional[str] = Field(None, alias="lastSaved")
    stats: Optional[LedgerStats] = None
