"""
Degradation Guard / 上下文降级防护
Keeps an assembled prompt inside its token budget with an ordered degrade ladder
按固定顺序裁剪内容，使组装好的提示词不超出预算
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from coderelay.context_engine.prompts import RELEVANT_FILES_PREFIX
from coderelay.context_engine.token_counter import TokenCounter
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

STEP_DROP_HISTORY = "drop_oldest_history"
STEP_DROP_FILES = "drop_relevant_files"


@dataclass
class LadderResult:
    """降级结果 / Outcome of one ladder run"""
    messages: List[Dict[str, str]]
    total_tokens: int
    steps: List[str] = field(default_factory=list)

    @property
    def fired(self) -> bool:
        return bool(self.steps)


class DegradationGuard:
    """
    上下文降级防护
    Applies the degrade ladder and reports window pressure

    The ladder never removes the primary system message (index 0) or the
    final user query.
    """

    def __init__(self, counter: TokenCounter, warning_threshold: float = 0.7, critical_threshold: float = 0.9):
        self.counter = counter
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold

    # ========== 降级阶梯 (Degrade Ladder) ==========

    def apply_ladder(self, messages: List[Dict[str, str]], available: int) -> LadderResult:
        """
        应用降级阶梯

        1. 反复删除最旧的非系统消息 / drop the oldest non-system message repeatedly
        2. 仍超出时删除相关文件消息 / then drop the relevant-files system message

        Args:
            messages: 已组装的消息列表（首条为主系统消息，末条为用户查询）
            available: 可用 token 数

        Returns:
            LadderResult
        """
        result = list(messages)
        total = self.counter.count_messages(result)
        steps: List[str] = []

        if total <= available:
            return LadderResult(messages=result, total_tokens=total)

        dropped = 0
        while total > available:
            index = self._oldest_history_index(result)
            if index is None:
                break
            result.pop(index)
            dropped += 1
            total = self.counter.count_messages(result)
        if dropped:
            steps.append(STEP_DROP_HISTORY)
            logger.warning("Prompt over budget, dropped %d history message(s)", dropped)

        if total > available:
            index = self._relevant_files_index(result)
            if index is not None:
                result.pop(index)
                total = self.counter.count_messages(result)
                steps.append(STEP_DROP_FILES)
                logger.warning("Prompt over budget, dropped relevant files")

        if total > available:
            logger.warning("Prompt still over budget after degrading: %d > %d", total, available)

        return LadderResult(messages=result, total_tokens=total, steps=steps)

    @staticmethod
    def _oldest_history_index(messages: List[Dict[str, str]]):
        # index 0 is the primary system message, the last entry is the query
        for i in range(1, len(messages) - 1):
            if messages[i].get("role") != "system":
                return i
        return None

    @staticmethod
    def _relevant_files_index(messages: List[Dict[str, str]]):
        for i in range(1, len(messages) - 1):
            message = messages[i]
            if message.get("role") == "system" and (message.get("content") or "").startswith(RELEVANT_FILES_PREFIX):
                return i
        return None

    # ========== 窗口压力 (Window Pressure) ==========

    def check_usage(self, total_tokens: int, max_tokens: int) -> Tuple[bool, str]:
        """
        检测上下文是否接近溢出

        Returns:
            (是否需要关注, 状态消息)
        """
        usage_ratio = total_tokens / max(max_tokens, 1)

        if usage_ratio >= self.critical_threshold:
            return True, f"CRITICAL: context usage {usage_ratio:.1%}, compress now"
        elif usage_ratio >= self.warning_threshold:
            return True, f"WARNING: context usage {usage_ratio:.1%}, compression recommended"
        else:
            return False, f"OK: context usage {usage_ratio:.1%}"
