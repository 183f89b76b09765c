# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  提示词组装器 - 在实时上下文窗口的预算内组装消息，超出时按降级阶梯裁剪
  Prompt Assembler - Builds the message list for one query inside the budget derived
  from the live context window, degrading in a fixed order when over budget.

实现方式 / Implementation:
  - 固定顺序：系统 → 压缩摘要 → 相关文件 → 最近消息 → 用户查询
    fixed order: system, summary, relevant files, recent messages, query
  - 文件按预算贪心纳入，放不下时截断最后一个并停止
    files are included greedily; the first one that does not fit is truncated and ends inclusion
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from coderelay.context_engine.budget_manager import ContextBudgetManager
from coderelay.context_engine.conversation_ledger import ConversationLedger
from coderelay.context_engine.degradation_guard import STEP_DROP_FILES, DegradationGuard
from coderelay.context_engine.models import PromptAssembly
from coderelay.context_engine.prompts import (
    COMPRESSED_HISTORY_PREFIX,
    PROJECT_INSTRUCTIONS_HEADER,
    RELEVANT_FILES_PREFIX,
    TOOLS_ADDENDUM,
    get_default_system_prompt,
    load_system_prompt,
)
from coderelay.context_engine.token_counter import TokenCounter
from coderelay.services.task_list import NO_PENDING_TASKS, TaskList
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

# 截断文件至少要留下的 token 数 / Minimum room for a truncated file tail
MIN_TRUNCATED_FILE_TOKENS = 100


class PromptAssembler:
    """
    提示词组装器 / Prompt assembler

    All collaborators are shared by reference with the owning session.

    Attributes:
        counter (TokenCounter): Token 计数器
        indexer (CodebaseIndexer): 代码库索引
        ledger (ConversationLedger): 对话账本
        tasks (TaskList): 任务列表
        budget_manager (ContextBudgetManager): 预算管理器
        guard (DegradationGuard): 降级防护
    """

    def __init__(
        self,
        counter: TokenCounter,
        indexer,
        ledger: ConversationLedger,
        tasks: TaskList,
        context_window: Callable[[], Awaitable[int]],
        budget_manager: Optional[ContextBudgetManager] = None,
        prompts_cfg: Optional[Dict[str, Any]] = None,
        max_files: int = 5,
        recent_count: int = 5,
        instructions: Optional[str] = None,
        use_tools: bool = False,
    ):
        self.counter = counter
        self.indexer = indexer
        self.ledger = ledger
        self.tasks = tasks
        self.context_window = context_window
        self.budget_manager = budget_manager or ContextBudgetManager()
        self.guard = DegradationGuard(counter)
        self.prompts_cfg = prompts_cfg or {}
        self.max_files = int(max_files)
        self.recent_count = int(recent_count)
        self.instructions = instructions
        self.use_tools = use_tools

    # ========== 系统消息 (System Message) ==========

    async def build_system_prompt(self, mode: Optional[str] = None) -> str:
        prompt = await load_system_prompt(self.prompts_cfg, mode)
        if self.use_tools and mode != "edit":
            prompt += TOOLS_ADDENDUM
        if self.instructions and self.instructions.strip():
            prompt += PROJECT_INSTRUCTIONS_HEADER + self.instructions.strip()
        return prompt

    def _with_tasks(self, system_prompt: str) -> str:
        task_list = self.tasks.get_task_list_for_prompt()
        if task_list == NO_PENDING_TASKS:
            return system_prompt
        return system_prompt + "\n\n" + task_list

    # ========== 主流程 (Main Flow) ==========

    async def build_prompt(self, query: str) -> PromptAssembly:
        """
        为一次查询组装提示词

        Args:
            query: 用户查询

        Returns:
            PromptAssembly，metadata 中记录降级是否发生
        """
        window = await self.context_window()
        budget = self.budget_manager.plan(window)
        available = budget.available

        system_content = self._with_tasks(await self.build_system_prompt())
        messages: List[Dict[str, str]] = [{"role": "system", "content": system_content}]
        self.budget_manager.usage("system_prompt").spend(self.counter.count_tokens(system_content))

        history = self.ledger.get_messages_for_prompt(budget.history, self.recent_count)
        compressed = history["compressed"]
        if compressed:
            messages.append({"role": "system", "content": COMPRESSED_HISTORY_PREFIX + compressed})
            self.budget_manager.usage("compressed_history").spend(self.counter.count_tokens(compressed))

        file_block, files_included = await self._relevant_files(query, budget.file_contents)
        if file_block:
            messages.append({"role": "system", "content": file_block})

        recent = history["recent"]
        messages.extend(recent)
        self.budget_manager.usage("recent_history").spend(self.counter.count_messages(recent), items=len(recent))

        messages.append({"role": "user", "content": query})
        self.budget_manager.usage("user_query").spend(self.counter.count_tokens(query))

        ladder = self.guard.apply_ladder(messages, available)
        if ladder.fired:
            logger.warning("Prompt reduced to fit %d tokens: %s", available, ", ".join(ladder.steps))

        final = ladder.messages
        return PromptAssembly(
            messages=final,
            total_tokens=ladder.total_tokens,
            available_tokens=available,
            budget=budget.to_dict(),
            files_included=0 if STEP_DROP_FILES in ladder.steps else files_included,
            history_messages=sum(1 for m in final[1:-1] if m.get("role") != "system"),
            has_compressed_history=bool(compressed),
            was_reduced=ladder.fired,
            reductions=list(ladder.steps),
        )

    async def _relevant_files(self, query: str, token_budget: int) -> Tuple[str, int]:
        entries = self.indexer.search_files(query, self.max_files)
        files: List[Tuple[str, str]] = []
        for entry in entries:
            if entry.skipped:
                continue
            try:
                files.append((entry.path, await self.indexer.files.read_text(entry.path)))
            except (OSError, ValueError) as e:
                logger.warning("Could not read %s for prompt: %s", entry.path, e)
        return self.format_file_contents(files, token_budget)

    def format_file_contents(self, files: List[Tuple[str, str]], token_budget: int) -> Tuple[str, int]:
        """
        贪心纳入文件

        Each file is appended whole while it fits; the first file that does not
        fit is appended truncated when enough room remains, then inclusion stops.

        Returns:
            (格式化文本, 纳入文件数)
        """
        if not files:
            return "", 0

        content = RELEVANT_FILES_PREFIX
        tokens_used = self.counter.count_tokens(content)
        included = 0
        usage = self.budget_manager.usage("file_contents")

        for path, text in files:
            header = f"--- {path} ---\n"
            footer = "\n\n"
            block = header + text + footer
            block_tokens = self.counter.count_tokens(block)

            if tokens_used + block_tokens > token_budget:
                room = token_budget - tokens_used - self.counter.count_tokens(header + footer)
                if room > MIN_TRUNCATED_FILE_TOKENS:
                    truncated = self.counter.truncate_to_limit(text, room)
                    content += header + truncated + footer
                    usage.spend(self.counter.count_tokens(header + truncated + footer))
                    included += 1
                break

            content += block
            tokens_used += block_tokens
            usage.spend(block_tokens)
            included += 1

        if not included:
            return "", 0
        return content.strip(), included

    # ========== 其他轨道 (Other Tracks) ==========

    async def build_minimal_prompt(self, query: str) -> PromptAssembly:
        """精简提示词：简洁系统提示 + 任务 + 查询，无搜索无历史"""
        system_content = self._with_tasks(await load_system_prompt(self.prompts_cfg, "terse"))
        messages = [
            {"role": "system", "content": system_content},
            {"role": "user", "content": query},
        ]
        total = self.counter.count_messages(messages)
        return PromptAssembly(messages=messages, total_tokens=total, available_tokens=total)

    async def build_edit_prompt(self, path: str, content: str, instruction: str) -> PromptAssembly:
        """
        编辑轨道提示词

        Narrow context for one file edit: the edit-only system prompt, the
        complete file and the instruction. No conversation history.
        """
        system_content = self._with_tasks(get_default_system_prompt("edit"))
        messages = [
            {"role": "system", "content": system_content},
            {
                "role": "user",
                "content": f"FILE TO EDIT:\n\n--- {path} ---\n{content}\n\nINSTRUCTION:\n{instruction}",
            },
        ]
        total = self.counter.count_messages(messages)
        return PromptAssembly(messages=messages, total_tokens=total, available_tokens=total, files_included=1)

    @staticmethod
    def get_prompt_stats(assembly: PromptAssembly) -> Dict[str, Any]:
        return {
            "message_count": len(assembly.messages),
            "total_tokens": assembly.total_tokens,
            "file_count": assembly.files_included,
            "history_messages": assembly.history_messages,
            "has_compression": assembly.has_compressed_history,
            "was_reduced": assembly.was_reduced,
        }
