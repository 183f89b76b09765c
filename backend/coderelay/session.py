"""
Session
Owns one project's index, ledgers and budget state and runs the query workflow.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from coderelay.actions.executor import ActionExecutor, ExecutionReport
from coderelay.actions.extractor import (
    ParsedResponse,
    merge,
    parse_tagged,
    parse_tool_calls,
    tool_call_to_action,
)
from coderelay.actions.tools import get_tool_schemas
from coderelay.codebase.indexer import CodebaseIndexer
from coderelay.config import WORKSPACE_DIR_NAME, config as default_config, load_config
from coderelay.context_engine.budget_manager import ContextBudgetManager
from coderelay.context_engine.conversation_ledger import ConversationLedger
from coderelay.context_engine.models import PromptAssembly, ToolCall
from coderelay.context_engine.prompt_assembler import PromptAssembler
from coderelay.context_engine.token_counter import TokenCounter
from coderelay.exceptions import LLMError, PathResolutionError, RequestCancelledError, StorageError
from coderelay.llm_gateway.gateway import CancellationToken, LLMGateway, ModelResponse
from coderelay.services.file_service import FileService
from coderelay.services.task_list import TaskList
from coderelay.storage.file_lock import AsyncFileLock
from coderelay.storage.ledger_store import LedgerStorage
from coderelay.utils.llm_output import parse_tool_arguments
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

FOLLOW_UP_TEMPLATE = 'Original query: "{query}"\n\n{context}\n\nNow please provide your response based on the above information.'
WEB_UNAVAILABLE = "Web access is unavailable: no web client is configured."


class SessionStatus(str, Enum):
    """Session status values."""

    IDLE = "idle"
    QUERYING = "querying"
    INDEXING = "indexing"
    COMPRESSING = "compressing"
    CLOSED = "closed"


class WebClient(Protocol):
    """Outbound web collaborator; both calls return text ready for the prompt."""

    async def search(self, query: str) -> str: ...

    async def fetch(self, url: str) -> str: ...


@dataclass
class QueryResult:
    """Outcome of one processed query."""

    response: str
    parsed: ParsedResponse
    prompt: PromptAssembly
    follow_up: bool = False
    used_tools: bool = False
    compressed: bool = False
    usage: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "plain_text": self.parsed.plain_text,
            "questions": list(self.parsed.questions),
            "actions": [a.model_dump(mode="json") for a in self.parsed.actions],
            "has_actions": self.parsed.has_actions,
            "prompt": self.prompt.metadata,
            "follow_up": self.follow_up,
            "used_tools": self.used_tools,
            "compressed": self.compressed,
            "usage": dict(self.usage),
            "warnings": list(self.warnings),
        }


class Session:
    """
    Per-project session.

    Every component receives the shared index, ledger, task list and budget
    state by reference; nothing is process-global.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        gateway: LLMGateway,
        cfg: Optional[Dict[str, Any]] = None,
        web: Optional[WebClient] = None,
        counter: Optional[TokenCounter] = None,
    ):
        self.cfg = cfg if cfg is not None else default_config
        self.gateway = gateway
        self.web = web

        cm = self.cfg.get("context_management", {})
        self.search_cfg = self.cfg.get("search", {})
        self.max_search_results = int(self.search_cfg.get("max_search_results", 5))
        self.compression_threshold = float(cm.get("compression_threshold", 0.7))
        self.use_tools = bool(self.cfg.get("llm", {}).get("use_tools", False))
        self.edit_track = dict(self.cfg.get("edit_track") or {})

        self.files = FileService(project_root)
        self.storage = LedgerStorage(self.files.root, WORKSPACE_DIR_NAME)
        self.file_lock = AsyncFileLock()

        self.counter = counter or TokenCounter.from_config(self.cfg.get("tokens"))
        self.indexer = CodebaseIndexer(self.files, self.cfg.get("codebase"), self.search_cfg)
        self.tasks = TaskList()
        self.ledger = ConversationLedger(
            self.counter,
            summarizer=gateway,
            keep_recent=int(cm.get("recent_messages_count", 5)),
            threshold=self.compression_threshold,
            usage_reader=lambda: self.gateway.last_prompt_tokens,
        )
        self.budget_manager = ContextBudgetManager(
            ratios=dict(self.cfg.get("context_budget") or {}) or None,
            response_reserve=int(cm.get("response_reserve", 800)),
        )
        self.assembler = PromptAssembler(
            self.counter,
            self.indexer,
            self.ledger,
            self.tasks,
            context_window=self.gateway.get_context_window,
            budget_manager=self.budget_manager,
            prompts_cfg=self.cfg.get("prompts"),
            max_files=int(cm.get("max_files_in_context", 5)),
            recent_count=int(cm.get("recent_messages_count", 5)),
            use_tools=self.use_tools,
        )
        self.executor = ActionExecutor(self.files, self.indexer, self.tasks)

        self.status = SessionStatus.IDLE
        self._query_lock = asyncio.Lock()

    @property
    def project_root(self) -> Path:
        return self.files.root

    # ========== 生命周期 (Lifecycle) ==========

    @classmethod
    async def open(
        cls,
        project_root: Union[str, Path],
        gateway: Optional[LLMGateway] = None,
        cfg: Optional[Dict[str, Any]] = None,
        web: Optional[WebClient] = None,
        counter: Optional[TokenCounter] = None,
        auto_index: bool = True,
    ) -> "Session":
        """
        Open a session: create the workspace, load the three ledger documents
        (absent files give empty defaults) and the project instructions.
        """
        root = Path(project_root).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Project root not found: {root}")

        base = cfg if cfg is not None else default_config
        merged = load_config(root / WORKSPACE_DIR_NAME / "config.yaml", base=base)
        session = cls(root, gateway or LLMGateway.from_config(merged.get("llm", {})), merged, web, counter)

        session.storage.ensure_workspace()
        session.tasks.tasks = TaskList.from_document(await session.storage.read_task_list()).tasks
        session.ledger.load_document(await session.storage.read_conversation())
        session.indexer.load_document(await session.storage.read_index())
        session.assembler.instructions = await session.storage.read_instructions()

        if auto_index and (not session.indexer.entries or session.indexer.is_stale()):
            await session.rebuild_index()

        logger.info(
            "Session opened for %s (%d indexed files, %d messages)",
            root, len(session.indexer.entries), len(session.ledger.full),
        )
        return session

    async def close(self) -> None:
        if self.status == SessionStatus.CLOSED:
            return
        await self.checkpoint()
        self.status = SessionStatus.CLOSED
        logger.info("Session closed for %s", self.project_root)

    async def checkpoint(self) -> None:
        """Persist task list, conversation and index; checkpoints never overlap."""
        async with self.file_lock.lock(self.storage.workspace):
            try:
                await self.storage.write_task_list(self.tasks.to_document())
                await self.storage.write_conversation(self.ledger.to_document())
                await self.storage.write_index(self.indexer.to_document())
            except StorageError as e:
                logger.error("Checkpoint failed for %s: %s", self.project_root, e)
                raise

    # ========== 查询流程 (Query Workflow) ==========

    async def process_query(
        self,
        query: str,
        cancel: Optional[CancellationToken] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> QueryResult:
        """
        Run one query end to end.

        Search, read-range and web requests are resolved and folded into one
        follow-up model call before anything is surfaced. History is appended
        only after the final response arrives; a cancelled query leaves every
        ledger untouched.
        """
        async with self._query_lock:
            self.status = SessionStatus.QUERYING
            try:
                return await self._process_query(query, cancel, on_chunk)
            finally:
                self.status = SessionStatus.IDLE

    async def _process_query(
        self,
        query: str,
        cancel: Optional[CancellationToken],
        on_chunk: Optional[Callable[[str], None]],
    ) -> QueryResult:
        prompt = await self.assembler.build_prompt(query)
        follow_up = False
        used_tools = False

        if self.use_tools:
            response = await self.gateway.complete(prompt.messages, tools=get_tool_schemas(self.web is not None), cancel=cancel)
        else:
            text = await self.gateway.collect_stream(prompt.messages, cancel=cancel, on_chunk=on_chunk)
            response = ModelResponse(content=text)

        if response.is_tool_call:
            used_tools = True
            final_text, parsed = await self._run_tool_round(prompt, response, cancel)
        else:
            final_text = response.content
            parsed = parse_tagged(final_text)
            if parsed.needs_follow_up:
                follow_up = True
                final_text, parsed = await self._run_follow_up(query, final_text, parsed, cancel, on_chunk)

        if parsed.mutations and self.edit_track.get("enabled"):
            parsed.actions = [await self._refine_edit(a, cancel) if a.kind == "edit" else a for a in parsed.actions]

        if cancel is not None:
            cancel.raise_if_cancelled()

        result = QueryResult(
            response=final_text,
            parsed=parsed,
            prompt=prompt,
            follow_up=follow_up,
            used_tools=used_tools,
            usage=dict(self.gateway.last_usage),
        )
        await self._record_exchange(query, final_text, result)
        return result

    async def _record_exchange(self, query: str, answer: str, result: QueryResult) -> None:
        self.ledger.add_message("user", query)
        self.ledger.add_message("assistant", answer)

        window = await self.gateway.get_context_window()
        if self.ledger.should_compress(context_window=window):
            self.status = SessionStatus.COMPRESSING
            result.compressed = await self.ledger.compress_history()
            if not result.compressed:
                result.warnings.append("History compression failed; full history kept")

        try:
            await self.checkpoint()
        except StorageError as e:
            result.warnings.append(f"Checkpoint failed: {e}")

    async def _run_follow_up(
        self,
        query: str,
        first_text: str,
        parsed: ParsedResponse,
        cancel: Optional[CancellationToken],
        on_chunk: Optional[Callable[[str], None]],
    ):
        context = await self.resolve_requests(parsed)
        if not context:
            return first_text, parsed

        follow_prompt = await self.assembler.build_prompt(FOLLOW_UP_TEMPLATE.format(query=query, context=context))
        text = await self.gateway.collect_stream(follow_prompt.messages, cancel=cancel, on_chunk=on_chunk)
        final = parse_tagged(text)
        if parsed.plain_text:
            final.plain_text = "\n\n".join(t for t in (parsed.plain_text, final.plain_text) if t)
        return text, final

    async def _run_tool_round(self, prompt: PromptAssembly, response: ModelResponse, cancel: Optional[CancellationToken]):
        requested = parse_tool_calls(response.tool_calls, response.content)
        tool_messages = [await self._tool_message(call) for call in response.tool_calls]

        messages = list(prompt.messages) + [response.assistant_message()] + tool_messages
        final = await self.gateway.complete(messages, cancel=cancel)
        kept = ParsedResponse(actions=requested.mutations, plain_text=requested.plain_text)
        return final.content, merge(kept, parse_tagged(final.content))

    async def _tool_message(self, call: ToolCall) -> Dict[str, Any]:
        args, error = parse_tool_arguments(call.arguments)
        action = tool_call_to_action(call.name, args) if args is not None else None
        if action is None:
            content = f"Error: could not use {call.name} call ({error or 'invalid arguments'})"
        elif action.kind in ("search", "read_range", "web_search", "web_fetch"):
            content = await self.resolve_requests(ParsedResponse(actions=[action])) or "No results."
        else:
            content = "Recorded. It will be applied after the user confirms."
        return {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": content}

    async def resolve_requests(self, parsed: ParsedResponse) -> str:
        """Turn search, read-range and web requests into prompt context text."""
        parts: List[str] = []

        keywords = parsed.search_keywords
        if keywords:
            parts.append(await self.search(keywords))

        reads = parsed.read_requests
        if reads:
            parts.append(await self.indexer.format_line_ranges((r.path, r.start_line, r.end_line) for r in reads))

        for request in parsed.web_requests:
            parts.append(await self._resolve_web(request))

        return "\n\n".join(p for p in parts if p)

    async def search(self, keywords: Sequence[str]) -> str:
        results = await self.indexer.search_file_contents(
            list(keywords),
            int(self.search_cfg.get("context_lines", 3)),
            "extended",
        )
        if not results:
            logger.info("No matches for %s", ", ".join(keywords))
            return f"SEARCH RESULTS:\nNo matches found for: {', '.join(keywords)}"
        loaded = await self.indexer.load_files_from_search_results(results[:self.max_search_results])
        return self.indexer.format_search_results(loaded)

    async def _resolve_web(self, request: Any) -> str:
        if request.kind == "web_search":
            label = f'WEB SEARCH RESULTS FOR "{request.query}"'
        else:
            label = f"WEB PAGE {request.url}"
        if self.web is None:
            return f"{label}:\n{WEB_UNAVAILABLE}"
        try:
            if request.kind == "web_search":
                body = await self.web.search(request.query)
            else:
                body = await self.web.fetch(request.url)
        except Exception as e:
            logger.warning("Web request failed (%s): %s", label, e)
            return f"{label}:\nFAILED: {e}"
        return f"{label}:\n{body}"

    # ========== 编辑轨道 (Edit Track) ==========

    async def process_edit(self, path: str, instruction: str, cancel: Optional[CancellationToken] = None) -> QueryResult:
        """Narrow edit track: the complete file plus the instruction, no history."""
        resolved = self.executor.resolve_existing(path)
        content = await self.files.read_text(resolved)
        prompt = await self.assembler.build_edit_prompt(resolved, content, instruction)
        text = await self.gateway.collect_stream(prompt.messages, cancel=cancel)
        return QueryResult(response=text, parsed=parse_tagged(text), prompt=prompt, usage=dict(self.gateway.last_usage))

    async def _refine_edit(self, action: Any, cancel: Optional[CancellationToken]) -> Any:
        """
        Re-ask the model for an edit through the edit track when the target
        file is large (or always, when configured). The original edit is kept
        whenever refinement is not possible.
        """
        try:
            resolved = self.executor.resolve_existing(action.path)
            content = await self.files.read_text(resolved)
        except (PathResolutionError, OSError, ValueError) as e:
            logger.debug("Edit track skipped for %s: %s", action.path, e)
            return action

        line_count = len(content.splitlines())
        threshold = int(self.edit_track.get("use_for_files_larger_than", 300))
        if not (self.edit_track.get("always") or line_count > threshold):
            return action

        logger.info("Using edit track for %s (%d lines)", resolved, line_count)
        instruction = f"Change the following code:\n\n{action.old_text}\n\nTo:\n\n{action.new_text}"
        prompt = await self.assembler.build_edit_prompt(resolved, content, instruction)
        try:
            response = await self.gateway.complete(prompt.messages, cancel=cancel)
        except RequestCancelledError:
            raise
        except LLMError as e:
            logger.warning("Edit track failed for %s: %s", resolved, e)
            return action

        if response.is_tool_call:
            refined = parse_tool_calls(response.tool_calls, response.content)
        else:
            refined = parse_tagged(response.content)
        edits = [a for a in refined.actions if a.kind == "edit"]
        if not edits:
            logger.info("Edit track produced no edit for %s, keeping the original", resolved)
            return action
        return edits[0]

    # ========== 命令 (Commands) ==========

    async def rebuild_index(self) -> int:
        self.status = SessionStatus.INDEXING
        try:
            count = await self.indexer.build_index()
        finally:
            self.status = SessionStatus.IDLE
        await self.checkpoint()
        return count

    async def compress_history(self) -> bool:
        self.status = SessionStatus.COMPRESSING
        try:
            compressed = await self.ledger.compress_history()
        finally:
            self.status = SessionStatus.IDLE
        if compressed:
            await self.checkpoint()
        return compressed

    async def clear_history(self) -> None:
        self.ledger.clear()
        await self.checkpoint()

    async def execute_actions(self, actions: Sequence[Any]) -> ExecutionReport:
        """Apply a batch fail-fast; state is checkpointed whether or not it completes."""
        try:
            return await self.executor.execute(actions)
        finally:
            await self.checkpoint()

    def stats(self) -> Dict[str, Any]:
        return {
            "project_root": str(self.project_root),
            "status": self.status.value,
            "ledger": self.ledger.get_stats().model_dump(mode="json"),
            "index": self.indexer.get_project_structure(),
            "tasks": self.tasks.get_stats(),
            "budget": self.budget_manager.get_usage_summary(),
            "last_usage": dict(self.gateway.last_usage),
        }
