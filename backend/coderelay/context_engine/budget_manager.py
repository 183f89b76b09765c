# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  上下文预算管理器 - 按固定比例把可用token分配给提示词各部分
  Context Budget Manager - Splits the available tokens across prompt sections by fixed fractions.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from coderelay.utils.logger import get_logger

logger = get_logger(__name__)


# 默认比例 5/5/20/30/35/5 / Default fractions
DEFAULT_RATIOS: Dict[str, float] = {
    "system_prompt": 0.05,
    "task_list": 0.05,
    "compressed_history": 0.20,
    "recent_history": 0.30,
    "file_contents": 0.35,
    "user_query": 0.05,
}

BUDGET_SECTIONS = tuple(DEFAULT_RATIOS.keys())


@dataclass
class TokenBudget:
    """
    预算分配结果 / Budget allocation result

    Represents how the available tokens of one query are split across
    prompt sections.

    Attributes:
        available (int): 总可用token数 / Total available tokens.
        system_prompt (int): 系统提示词预算 / System instructions budget.
        task_list (int): 任务列表预算 / Pending-task summary budget.
        compressed_history (int): 压缩历史预算 / Compressed summary budget.
        recent_history (int): 近期消息预算 / Recent messages budget.
        file_contents (int): 文件内容预算 / Relevant files budget.
        user_query (int): 用户问题预算 / User query budget.
    """
    available: int
    system_prompt: int
    task_list: int
    compressed_history: int
    recent_history: int
    file_contents: int
    user_query: int

    @property
    def allocated(self) -> int:
        """Sum of all section allocations."""
        return sum(getattr(self, name) for name in BUDGET_SECTIONS)

    @property
    def history(self) -> int:
        """Compressed plus recent history budget."""
        return self.compressed_history + self.recent_history

    def to_dict(self) -> Dict[str, int]:
        """转换为字典 / Convert to dictionary format."""
        data = {name: getattr(self, name) for name in BUDGET_SECTIONS}
        data["available"] = self.available
        return data


@dataclass
class BudgetUsage:
    """
    预算使用情况 / Budget usage tracking

    Tracks how much of one section's allocation has been spent.
    """
    category: str
    allocated: int
    used: int = 0
    items_count: int = 0

    @property
    def remaining(self) -> int:
        """剩余可用token / Remaining tokens in this category."""
        return max(0, self.allocated - self.used)

    def can_fit(self, tokens: int) -> bool:
        return self.used + tokens <= self.allocated

    def spend(self, tokens: int, items: int = 1) -> None:
        self.used += tokens
        self.items_count += items


def validate_ratios(ratios: Optional[Dict[str, float]]) -> Dict[str, float]:
    """
    校验并规范化预算比例

    Validate budget fractions. Missing sections take their default, negative
    values raise ``ValueError`` and a total above 1.0 is scaled down so the
    fractions sum to exactly 1.0.
    """
    merged = dict(DEFAULT_RATIOS)
    for key, value in (ratios or {}).items():
        if key not in DEFAULT_RATIOS:
            continue
        merged[key] = float(value)

    for key, value in merged.items():
        if value < 0:
            raise ValueError(f"Budget fraction for '{key}' must be non-negative, got {value}")

    total = sum(merged.values())
    if total > 1.0:
        logger.warning("Budget fractions sum to %.3f, scaling down to 1.0", total)
        merged = {k: v / total for k, v in merged.items()}

    return merged


def available_tokens(context_window: int, reserved: int) -> int:
    """可用token = 上下文窗口 - 预留 / ``max(0, context_window - reserved)``."""
    return max(0, int(context_window) - int(reserved))


def allocate_budget(available: int, ratios: Optional[Dict[str, float]] = None) -> TokenBudget:
    """
    按比例分配预算 / Allocate ``available`` tokens by the section fractions.

    Each allocation is floored, so the sections never add up to more than
    ``available``.
    """
    fractions = validate_ratios(ratios)
    available = max(0, int(available))
    return TokenBudget(
        available=available,
        **{name: int(available * fractions[name]) for name in BUDGET_SECTIONS},
    )


@dataclass
class ContextBudgetManager:
    """
    上下文预算管理器 / Context Budget Manager

    Derives one :class:`TokenBudget` per query and tracks per-section usage
    while the prompt is assembled.
    """
    ratios: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_RATIOS))
    response_reserve: int = 800
    _usage: Dict[str, BudgetUsage] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self.ratios = validate_ratios(self.ratios)

    def plan(self, context_window: int) -> TokenBudget:
        """Compute the budget for a live context window and reset usage tracking."""
        budget = allocate_budget(available_tokens(context_window, self.response_reserve), self.ratios)
        self._usage = {
            name: BudgetUsage(category=name, allocated=getattr(budget, name))
            for name in BUDGET_SECTIONS
        }
        return budget

    def usage(self, category: str) -> BudgetUsage:
        if category not in self._usage:
            self._usage[category] = BudgetUsage(category=category, allocated=0)
        return self._usage[category]

    def get_usage_summary(self) -> Dict[str, Dict[str, int]]:
        """获取使用情况摘要 / Per-section allocated, used and remaining tokens."""
        return {
            name: {
                "allocated": usage.allocated,
                "used": usage.used,
                "remaining": usage.remaining,
                "items": usage.items_count,
            }
            for name, usage in self._usage.items()
        }
