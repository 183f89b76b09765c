# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM提供商抽象基类 - 统一接口定义
  Base LLM Provider Abstract Class - Unified interface for chat, streaming and model listing.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, Dict, List, Optional


class BaseLLMProvider(ABC):
    """
    大模型提供商抽象基类 / Abstract base class for LLM providers

    Attributes:
        api_key (str): API密钥 / API key for authentication.
        model (str): 模型名称 / Model name/identifier.
        max_tokens (int): 最大生成token数 / Maximum tokens to generate.
        temperature (float): 生成温度 / Sampling temperature.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        发送聊天请求 / Send a chat request.

        Args:
            messages: 消息列表 / Message list in chat-completion format.
            temperature: 覆盖默认温度 / Override temperature.
            max_tokens: 覆盖默认token限制 / Override max tokens.
            tools: OpenAI 函数调用格式的工具 / Tools in OpenAI function-calling form.

        Returns:
            响应字典 / Response dict with keys:
            - content: 生成的文本 / Generated text (may be empty with tool calls)
            - tool_calls: [{"id", "name", "arguments"}] 列表 / Function calls
            - usage: {"prompt_tokens", "completion_tokens", "total_tokens"}
            - finish_reason: 完成原因 / Completion reason
        """

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> AsyncGenerator[str, None]:
        """
        流式输出聊天响应 / Stream the response as text increments.

        Default implementation falls back to non-streaming. Subclasses should
        override for true streaming support.
        """
        response = await self.chat(messages, temperature, max_tokens)
        yield response.get("content", "")

    async def list_models(self) -> List[Dict[str, Any]]:
        """列出端点上的模型 / Models exposed by the endpoint, as raw dicts."""
        return []

    @abstractmethod
    def get_provider_name(self) -> str:
        """获取提供商名称 / Get provider name."""
