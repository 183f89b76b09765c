# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  OpenAI 兼容提供商 - 通过 openai 异步客户端访问本地或远程的兼容端点（LM Studio 等）
  OpenAI-compatible Provider - Talks to local or remote compatible endpoints (LM Studio, etc.)
  through the openai async client.
"""

from typing import Any, AsyncGenerator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from coderelay.exceptions import LLMClientError, LLMConnectionError
from coderelay.llm_gateway.errors import CONNECTION_HINT, is_connection_refused
from coderelay.llm_gateway.providers.base import BaseLLMProvider
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)


class OpenAICompatibleProvider(BaseLLMProvider):
    """
    OpenAI 兼容提供商 / OpenAI-compatible provider

    Attributes:
        base_url (str): 端点地址 / Endpoint base URL
        client (AsyncOpenAI): 异步客户端 / Async client
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        timeout: float = 600.0,
    ):
        super().__init__(api_key, model, max_tokens, temperature)
        self.base_url = base_url
        # Retries are owned by the gateway
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def get_provider_name(self) -> str:
        return "openai_compatible"

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            raise self._translate(e) from e

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            {
                "id": call.id,
                "name": call.function.name,
                "arguments": call.function.arguments or "",
            }
            for call in (message.tool_calls or [])
            if getattr(call, "function", None) is not None
        ]
        usage = response.usage
        return {
            "content": message.content or "",
            "tool_calls": tool_calls,
            "usage": {
                "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
                "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
                "total_tokens": getattr(usage, "total_tokens", 0) or 0,
            },
            "model": response.model,
            "finish_reason": choice.finish_reason,
        }

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> AsyncGenerator[str, None]:
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
                stream=True,
            )
        except openai.APIError as e:
            raise self._translate(e) from e

        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta and delta.content:
                yield delta.content

    async def list_models(self) -> List[Dict[str, Any]]:
        try:
            page = await self.client.models.list()
        except openai.APIError as e:
            raise self._translate(e) from e
        return [model.model_dump() for model in page.data]

    def _translate(self, error: openai.APIError) -> Exception:
        if isinstance(error, openai.APIConnectionError):
            refused = is_connection_refused(error)
            message = f"Cannot connect to model server at {self.base_url or 'default endpoint'}: {error}"
            return LLMConnectionError(message, hint=CONNECTION_HINT, retryable=not refused)
        if isinstance(error, (openai.BadRequestError, openai.AuthenticationError, openai.NotFoundError)):
            return LLMClientError(str(error))
        return error
