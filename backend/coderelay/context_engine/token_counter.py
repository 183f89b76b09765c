# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  Token计数器 - 精确计数（tiktoken）与估算，消息开销建模，按token上限截断
  Token Counter - Exact counting via tiktoken with a character-ratio estimate as the
  silent fallback, chat-framing overhead, and token-capped truncation.
"""

import math
from typing import Any, Dict, Iterable, Mapping, Optional

import tiktoken

from coderelay.context_engine.budget_manager import TokenBudget, allocate_budget, available_tokens
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

TRUNCATION_MARKER = "\n... [truncated]"


class TokenCounter:
    """
    Token计数器 / Token counter

    Counts with a tiktoken encoding when one can be loaded and falls back to
    ``ceil(len(text) / chars_per_token)`` otherwise. Counting never raises.

    Attributes:
        chars_per_token (float): 估算时每token平均字符数 / Average characters per token.
        message_overhead (int): 每条消息的框架开销 / Per-message framing tokens.
        reply_overhead (int): 消息列表尾部开销 / Fixed tail tokens for a message list.
        chunk_chars (int): 截断时每次削减的字符数 / Characters chopped per truncation step.
    """

    def __init__(
        self,
        encoding_name: str = "cl100k_base",
        use_tiktoken: bool = True,
        chars_per_token: float = 3.5,
        message_overhead: int = 4,
        reply_overhead: int = 2,
        chunk_chars: int = 100,
    ):
        self.chars_per_token = chars_per_token
        self.message_overhead = message_overhead
        self.reply_overhead = reply_overhead
        self.chunk_chars = max(1, int(chunk_chars))
        self.encoding = self._load_encoding(encoding_name) if use_tiktoken else None

    @classmethod
    def from_config(cls, token_cfg: Optional[Mapping[str, Any]] = None) -> "TokenCounter":
        cfg = dict(token_cfg or {})
        return cls(
            encoding_name=cfg.get("encoding", "cl100k_base"),
            use_tiktoken=bool(cfg.get("use_tiktoken", True)),
            chars_per_token=float(cfg.get("chars_per_token", 3.5)),
            message_overhead=int(cfg.get("message_overhead", 4)),
            reply_overhead=int(cfg.get("reply_overhead", 2)),
            chunk_chars=int(cfg.get("truncate_chunk_chars", 100)),
        )

    @staticmethod
    def _load_encoding(encoding_name: str):
        try:
            return tiktoken.get_encoding(encoding_name)
        except Exception as e:
            # 编码文件不可用时退回估算 / encoding files unavailable (offline, unknown name)
            logger.warning("Failed to load tiktoken encoding %s, falling back to estimation: %s", encoding_name, e)
            return None

    @property
    def exact(self) -> bool:
        """Whether counts come from a real tokenizer."""
        return self.encoding is not None

    def count_tokens(self, text: Optional[str]) -> int:
        """Count tokens in ``text``; empty or ``None`` counts as zero."""
        if not text:
            return 0
        if self.encoding is not None:
            try:
                return len(self.encoding.encode(text, disallowed_special=()))
            except Exception as e:
                logger.debug("Token counting error, using estimation: %s", e)
        return self.estimate(text)

    def estimate(self, text: Optional[str]) -> int:
        """
        快速估算 / Fast estimate.

        Code sits near 3 chars/token and English prose near 4, so the default
        ratio is 3.5. Always rounds up.
        """
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def count_messages(self, messages: Optional[Iterable[Mapping[str, Any]]]) -> int:
        """
        统计消息列表的token数 / Count tokens for a chat message list.

        Each message costs a fixed framing overhead plus its role and content
        tokens; the list as a whole adds a small tail overhead.
        """
        messages = list(messages or [])
        if not messages:
            return 0

        total = 0
        for message in messages:
            total += self.message_overhead
            total += self.count_tokens(str(message.get("role") or ""))
            total += self.count_tokens(str(message.get("content") or ""))
        return total + self.reply_overhead

    def available_tokens(self, context_window: int, reserved: int = 800) -> int:
        return available_tokens(context_window, reserved)

    def allocate(self, available: int, ratios: Optional[Dict[str, float]] = None) -> TokenBudget:
        return allocate_budget(available, ratios)

    def truncate_to_limit(self, text: Optional[str], max_tokens: int) -> str:
        """
        截断文本到token上限 / Truncate ``text`` so it measures at most ``max_tokens``.

        Starts from a cut point derived from the token/char ratio with a 5%
        safety margin, then chops ``chunk_chars`` characters off the end and
        re-measures until the text plus the truncation marker fits. The result
        is always re-measured, never assumed.
        """
        if not text:
            return ""
        max_tokens = max(0, int(max_tokens))

        current = self.count_tokens(text)
        if current <= max_tokens:
            return text
        if max_tokens == 0:
            return ""

        marker = TRUNCATION_MARKER
        if self.count_tokens(marker) > max_tokens:
            marker = ""

        ratio = max_tokens / current
        cut = int(len(text) * ratio * 0.95)
        truncated = text[:cut]

        while truncated and self.count_tokens(truncated + marker) > max_tokens:
            truncated = truncated[:-self.chunk_chars]

        return truncated + marker

    def get_token_stats(self, content: Mapping[str, Any]) -> Dict[str, int]:
        """
        Token统计 / Per-key token counts for strings and message lists, plus ``total``.
        """
        stats: Dict[str, int] = {}
        for key, value in content.items():
            if isinstance(value, str):
                stats[key] = self.count_tokens(value)
            elif isinstance(value, list):
                stats[key] = self.count_messages(value)
        stats["total"] = sum(stats.values())
        return stats
