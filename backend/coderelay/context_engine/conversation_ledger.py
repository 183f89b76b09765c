"""
Conversation Ledger / 对话账本
Dual-track history: the full message window plus a compressed summary
双轨历史：完整消息窗口 + 压缩摘要
"""

import json
from typing import Any, Callable, Dict, List, Optional, Protocol

from coderelay.context_engine.models import ConversationMessage, MessageRole, utc_now_iso
from coderelay.context_engine.token_counter import TokenCounter
from coderelay.schemas.conversation import (
    ConversationDocument,
    HistoryRecord,
    LedgerStats,
    MessageRecord,
)
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

COMPRESSION_INSTRUCTIONS = """Compress this conversation into concise technical bullet points. Preserve all important information including:
- Technical decisions made
- Code changes and file modifications
- Function/class implementations
- Bugs fixed and solutions
- Pending issues or tasks
- Key discussions and conclusions

Omit: greetings, unnecessary explanations, verbose discussions.

Format as bullet points, grouped by topic."""

SUMMARY_SEPARATOR = "\n\n"


class Summarizer(Protocol):
    """摘要协作者 / Summarization collaborator (the LLM gateway in production)"""

    async def summarize(self, text: str, instructions: str) -> str: ...


class ConversationLedger:
    """
    对话账本
    Holds the append-only history of one project and compresses aged messages

    Invariant: compression only replaces a prefix of ``full`` with summary text;
    the newest ``keep_recent`` messages are never compressed away.
    """

    def __init__(
        self,
        counter: TokenCounter,
        summarizer: Optional[Summarizer] = None,
        keep_recent: int = 5,
        threshold: float = 0.7,
        usage_reader: Optional[Callable[[], Optional[int]]] = None,
    ):
        """
        初始化对话账本

        Args:
            counter: Token 计数器
            summarizer: 摘要协作者
            keep_recent: 压缩时保留的最近消息数
            threshold: 触发压缩的窗口占用比例
            usage_reader: 返回最近一次真实 prompt token 用量的回调
        """
        self.counter = counter
        self.summarizer = summarizer
        self.keep_recent = max(0, int(keep_recent))
        self.threshold = float(threshold)
        self.usage_reader = usage_reader

        self.full: List[ConversationMessage] = []
        self.compressed: str = ""

    # ========== 追加与读取 (Append / Read) ==========

    def add_message(self, role: str, content: str) -> ConversationMessage:
        role = MessageRole(role).value
        message = ConversationMessage(role=role, content=content)
        self.full.append(message)
        return message

    def get_recent_messages(self, count: Optional[int] = None) -> List[ConversationMessage]:
        count = self.keep_recent if count is None else int(count)
        if count <= 0:
            return []
        return list(self.full[-count:])

    def remove_last_message(self) -> Optional[ConversationMessage]:
        return self.full.pop() if self.full else None

    def clear(self) -> None:
        self.full = []
        self.compressed = ""

    @property
    def active_window(self) -> List[ConversationMessage]:
        return self.get_recent_messages()

    # ========== 压缩 (Compression) ==========

    def should_compress(
        self,
        current_tokens: Optional[int] = None,
        max_tokens: Optional[int] = None,
        threshold: Optional[float] = None,
        context_window: Optional[int] = None,
    ) -> bool:
        """
        判断是否需要压缩

        Compares the current token count against ``ceiling * threshold``. The
        current count defaults to the latest real prompt usage reading, then
        to a live re-count of the full window.
        """
        if len(self.full) <= self.keep_recent:
            return False

        if current_tokens is None and self.usage_reader is not None:
            current_tokens = self.usage_reader()
        if current_tokens is None:
            current_tokens = self.counter.count_messages(m.to_chat() for m in self.full)

        ceiling = max_tokens if max_tokens is not None else context_window
        if not ceiling:
            return False
        ratio = self.threshold if threshold is None else threshold
        return current_tokens > ceiling * ratio

    async def compress_history(self, keep_recent: Optional[int] = None) -> bool:
        """
        压缩历史

        Summarizes every message except the newest ``keep_recent`` and appends
        the summary to ``compressed``. A summarizer failure leaves the ledger
        unchanged.

        Returns:
            True 表示压缩成功
        """
        keep = self.keep_recent if keep_recent is None else max(0, int(keep_recent))
        if len(self.full) <= keep:
            return False
        if self.summarizer is None:
            logger.warning("No summarizer configured, skipping compression")
            return False

        split = len(self.full) - keep
        to_compress = self.full[:split]
        to_keep = self.full[split:]

        try:
            summary = await self.summarizer.summarize(
                self._format_for_compression(to_compress),
                COMPRESSION_INSTRUCTIONS,
            )
        except Exception as e:
            logger.error("Failed to compress history: %s", e)
            return False

        summary = (summary or "").strip()
        if not summary:
            logger.error("Failed to compress history: summarizer returned empty text")
            return False

        self.compressed = f"{self.compressed}{SUMMARY_SEPARATOR}{summary}" if self.compressed else summary
        self.full = list(to_keep)
        logger.info("Compressed %d messages into summary", len(to_compress))
        return True

    @staticmethod
    def _format_for_compression(messages: List[ConversationMessage]) -> str:
        return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in messages)

    # ========== 提示词视图 (Prompt Views) ==========

    def get_messages_for_prompt(self, token_budget: int, recent_count: Optional[int] = None) -> Dict[str, Any]:
        """
        为提示词准备历史

        Recent messages are kept whole; the compressed summary gets whatever
        budget is left and is truncated, or dropped when nothing is left.
        """
        recent = self.get_recent_messages(recent_count)
        recent_chat = [m.to_chat() for m in recent]
        recent_tokens = self.counter.count_messages(recent_chat)

        compressed = self.compressed
        compressed_tokens = self.counter.count_tokens(compressed)
        if recent_tokens + compressed_tokens > token_budget:
            remaining = token_budget - recent_tokens
            compressed = self.counter.truncate_to_limit(compressed, remaining) if remaining > 0 else ""
            compressed_tokens = self.counter.count_tokens(compressed)

        return {
            "compressed": compressed,
            "recent": recent_chat,
            "total_tokens": recent_tokens + compressed_tokens,
        }

    def build_context_window(self, max_tokens: int, recent_count: Optional[int] = None) -> Dict[str, Any]:
        recent = [m.to_chat() for m in self.get_recent_messages(recent_count)]
        compressed_tokens = self.counter.count_tokens(self.compressed)
        recent_tokens = self.counter.count_messages(recent)
        total = compressed_tokens + recent_tokens
        return {
            "compressed": self.compressed,
            "recent": recent,
            "tokens": {"compressed": compressed_tokens, "recent": recent_tokens, "total": total},
            "fits_in_window": total <= max_tokens,
        }

    def get_stats(self) -> LedgerStats:
        full_tokens = self.counter.count_messages(m.to_chat() for m in self.full)
        compressed_tokens = self.counter.count_tokens(self.compressed)
        ratio = compressed_tokens / full_tokens if full_tokens and compressed_tokens else 0.0
        return LedgerStats(
            message_count=len(self.full),
            full_tokens=full_tokens,
            compressed_tokens=compressed_tokens,
            has_compression=bool(self.compressed),
            compression_ratio=round(ratio, 4),
        )

    def get_full_history_text(self) -> str:
        parts = []
        if self.compressed:
            parts.append(f"=== COMPRESSED HISTORY ===\n{self.compressed}")
        if self.full:
            parts.append("=== RECENT MESSAGES ===")
            parts.extend(f"{m.role.upper()}: {m.content}" for m in self.full)
        return "\n\n".join(parts)

    def export_history(self) -> str:
        return json.dumps(self.to_document().model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2)

    # ========== 持久化 (Persistence) ==========

    def to_document(self) -> ConversationDocument:
        def record(m: ConversationMessage) -> MessageRecord:
            return MessageRecord(role=m.role, content=m.content, timestamp=m.timestamp)

        return ConversationDocument(
            history=HistoryRecord(
                full=[record(m) for m in self.full],
                compressed=self.compressed,
                active_window=[record(m) for m in self.active_window],
            ),
            last_saved=utc_now_iso(),
            stats=self.get_stats(),
        )

    def load_document(self, document: ConversationDocument) -> None:
        self.full = [
            ConversationMessage(role=r.role, content=r.content, timestamp=r.timestamp or utc_now_iso())
            for r in document.history.full
        ]
        self.compressed = document.history.compressed or ""
