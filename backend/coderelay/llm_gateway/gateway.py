# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM网关 - 重试与退避、可取消的流式输出、摘要调用、上下文窗口探测
  LLM Gateway - Retry with backoff, cancellable streaming, summarization calls and
  live context-window detection over one provider.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from coderelay.context_engine.models import ToolCall
from coderelay.exceptions import (
    LLMClientError,
    LLMConnectionError,
    LLMError,
    RequestCancelledError,
)
from coderelay.llm_gateway.errors import classify_error, get_retry_delay
from coderelay.llm_gateway.providers.base import BaseLLMProvider
from coderelay.llm_gateway.providers.openai_provider import OpenAICompatibleProvider
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

CONTEXT_WINDOW_KEYS = (
    "context_length",
    "max_tokens",
    "context_window",
    "max_position_embeddings",
    "n_ctx",
)


class CancellationToken:
    """
    取消令牌 / Cooperative cancellation signal owned by the caller
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError("Request cancelled")


@dataclass
class ModelResponse:
    """
    模型响应 / A completion string or a set of tool calls, plus usage
    """
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None

    @property
    def is_tool_call(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "ModelResponse":
        calls = [
            ToolCall(
                id=str(call.get("id") or f"call_{i}"),
                name=str(call.get("name") or ""),
                arguments=call.get("arguments") or "",
            )
            for i, call in enumerate(raw.get("tool_calls") or [])
        ]
        return cls(
            content=raw.get("content") or "",
            tool_calls=calls,
            usage=dict(raw.get("usage") or {}),
            finish_reason=raw.get("finish_reason"),
        )

    def assistant_message(self) -> Dict[str, Any]:
        """The assistant turn to replay before tool results."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or ""}
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        return message


class LLMGateway:
    """
    LLM网关 / Model gateway

    Attributes:
        provider (BaseLLMProvider): 提供商 / Underlying provider
        retries (int): 最大尝试次数 / Maximum attempts per call
        fallback_context_window (int): 探测失败时的上下文窗口 / Window used when detection fails
        last_usage (Dict[str, int]): 最近一次调用的用量 / Usage of the latest call
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        retries: int = 3,
        fallback_context_window: int = 4096,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.retries = max(1, int(retries))
        self.fallback_context_window = int(fallback_context_window)
        self.last_usage: Dict[str, int] = {}
        self._sleep = sleep
        self._context_window: Optional[int] = None

    @classmethod
    def from_config(cls, llm_cfg: Dict[str, Any]) -> "LLMGateway":
        provider = OpenAICompatibleProvider(
            api_key=llm_cfg.get("api_key") or "lm-studio",
            model=llm_cfg.get("model") or "local-model",
            base_url=llm_cfg.get("base_url"),
            max_tokens=int(llm_cfg.get("max_tokens", 4096)),
            temperature=float(llm_cfg.get("temperature", 0.7)),
        )
        return cls(
            provider,
            retries=int(llm_cfg.get("retries", 3)),
            fallback_context_window=int(llm_cfg.get("max_tokens", 4096)),
        )

    @property
    def last_prompt_tokens(self) -> Optional[int]:
        value = self.last_usage.get("prompt_tokens")
        return int(value) if value else None

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ModelResponse:
        """
        非流式调用（带重试） / Non-streaming call with retry and backoff.

        Refused connections and client errors fail immediately; other
        failures are retried up to ``retries`` attempts (1s, 2s, 4s).

        Raises:
            RequestCancelledError: 调用被取消 / Cancelled by the caller
            LLMConnectionError: 无法连接 / Endpoint unreachable
            LLMClientError: 请求有误 / Request rejected
            LLMError: 重试耗尽 / Retries exhausted
        """
        last_error: Optional[Exception] = None
        for attempt in range(self.retries):
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                raw = await self._cancellable(
                    self.provider.chat(messages, temperature=temperature, max_tokens=max_tokens, tools=tools),
                    cancel,
                )
                response = ModelResponse.from_raw(raw)
                self.last_usage = response.usage
                return response
            except (RequestCancelledError, LLMClientError):
                raise
            except Exception as e:
                retryable, reason = classify_error(e)
                if not retryable:
                    if isinstance(e, LLMError):
                        raise
                    raise LLMClientError(f"Model request failed ({reason}): {e}") from e
                last_error = e

            if attempt < self.retries - 1:
                delay = get_retry_delay(attempt)
                logger.warning(
                    "Model call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, self.retries, delay, last_error,
                )
                await self._sleep(delay)

        if isinstance(last_error, LLMConnectionError):
            raise last_error
        raise LLMError(f"Model request failed after {self.retries} attempts: {last_error}") from last_error

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        cancel: Optional[CancellationToken] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """
        可取消的流式输出 / Cancellable stream of text increments.

        The token is checked between increments; on cancellation the
        underlying stream is closed and ``RequestCancelledError`` is raised.
        Streams report no usage, so ``last_usage`` is cleared and
        :attr:`last_prompt_tokens` reads None until the next ``complete()``.
        """
        self.last_usage = {}
        agen =self.provider.stream_chat(messages, temperature=temperature, max_tokens=max_tokens)
        try:
            async for chunk in agen:
                if cancel is not None and cancel.cancelled:
                    logger.info("Streaming cancelled by user")
                    raise RequestCancelledError("Request cancelled")
                yield chunk
        finally:
            await agen.aclose()

    async def collect_stream(
        self,
        messages: List[Dict[str, Any]],
        cancel: Optional[CancellationToken] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Consume :meth:`stream` into one string; partial text is discarded on cancel."""
        parts: List[str] = []
        async for chunk in self.stream(messages, cancel=cancel):
            parts.append(chunk)
            if on_chunk is not None:
                on_chunk(chunk)
        return "".join(parts)

    async def summarize(self, text: str, instructions: str) -> str:
        """摘要调用 / Summarization call used by history compression."""
        response = await self.complete(
            [
                {"role": "system", "content": instructions},
                {"role": "user", "content": text},
            ],
            temperature=0.3,
            max_tokens=1000,
        )
        return response.content.strip()

    async def get_context_window(self, refresh: bool = False) -> int:
        """
        探测上下文窗口 / Resolve the live context window.

        Reads the first loaded model's metadata; falls back to the configured
        window when the endpoint does not report one.
        """
        if self._context_window is not None and not refresh:
            return self._context_window

        try:
            models = await self.provider.list_models()
        except Exception as e:
            logger.debug("Context window detection failed: %s", e)
            return self.fallback_context_window

        chosen = None
        for model in models:
            if model.get("id") == self.provider.model:
                chosen = model
                break
        if chosen is None and models:
            chosen = models[0]

        for key in CONTEXT_WINDOW_KEYS:
            value = (chosen or {}).get(key)
            try:
                window = int(value)
            except (TypeError, ValueError):
                continue
            if window > 0:
                self._context_window = window
                logger.info("Detected context window: %d tokens", window)
                return window

        return self.fallback_context_window

    @staticmethod
    async def _cancellable(coro: Awaitable[Any], cancel: Optional[CancellationToken]) -> Any:
        if cancel is None:
            return await coro

        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Model call cancelled by user")
        raise RequestCancelledError("Request cancelled")
