"""
LLM Gateway Module / 大模型网关模块
Retry, cancellation and context-window detection over one provider
在单一提供商之上提供重试、取消与上下文窗口探测
"""

from .gateway import CancellationToken, LLMGateway, ModelResponse
from .errors import classify_error, get_retry_delay

__all__ = [
    "CancellationToken",
    "LLMGateway",
    "ModelResponse",
    "classify_error",
    "get_retry_delay",
]
