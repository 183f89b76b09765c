# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  LLM错误分类 - 将错误分类为可重试和不可重试，用于重试处理
  LLM Error Classification - Classifies errors as retryable or non-retryable for retry handling.
"""

import random
from typing import Optional, Sequence, Tuple

from coderelay.exceptions import LLMClientError, LLMConnectionError


# Refused connections mean the local server is not running; retrying will not help
# 连接被拒绝说明本地服务未启动，重试无意义
REFUSED_PATTERNS = (
    "connection refused",
    "econnrefused",
    "actively refused",
    "errno 111",
    "connect call failed",
)

# Non-retryable errors - should fail immediately
# 不可重试错误 - 应立即失败
NON_RETRYABLE_PATTERNS = (
    # Authentication / 认证错误
    "invalid_api_key",
    "invalid api key",
    "authentication",
    "unauthorized",
    # Permission / 权限错误
    "permission",
    "forbidden",
    # Invalid request / 无效请求
    "invalid_request_error",
    "invalid request",
    "bad request",
    "error code: 400",
    "invalid_model",
    "model not found",
    "model_not_found",
    "context_length_exceeded",
    "context length",
    "maximum context",
)

# Retryable errors - should retry with backoff
# 可重试错误 - 应使用退避重试
RETRYABLE_PATTERNS = (
    # Timeout / 超时
    "timeout",
    "timed out",
    # Connection / 连接
    "connection",
    "network",
    "socket",
    "reset",
    "unreachable",
    # Server / 服务器
    "server_error",
    "internal server",
    "error code: 500",
    "502",
    "503",
    "504",
    "bad gateway",
    "service unavailable",
    "overloaded",
    # Temporary rate limits / 临时限流
    "rate limit",
    "too many requests",
    "429",
)

CONNECTION_HINT = (
    "Make sure the model server (e.g. LM Studio) is running, a model is loaded, "
    "and the configured base_url is reachable."
)


def is_connection_refused(error: BaseException) -> bool:
    """Walk the cause chain looking for a refused connection."""
    current: Optional[BaseException] = error
    while current is not None:
        if isinstance(current, ConnectionRefusedError):
            return True
        text = str(current).lower()
        if any(p in text for p in REFUSED_PATTERNS):
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_error(error: Exception) -> Tuple[bool, str]:
    """
    将错误分类为可重试或不可重试

    Classify an error as retryable or non-retryable.

    - 连接被拒绝 / refused connection: 不可重试
    - 客户端错误 / client errors (400, auth, invalid request): 不可重试
    - 超时、重置、5xx、429 / timeouts, resets, 5xx, 429: 可重试
    - 未知错误 / unknown: 可重试

    Args:
        error: 要分类的异常 / The exception to classify

    Returns:
        元组 (is_retryable, reason) / Tuple of (is_retryable, reason)

    Example:
        >>> classify_error(TimeoutError("Request timed out"))
        (True, 'connection_error')
        >>> classify_error(ConnectionRefusedError("[Errno 111] Connection refused"))
        (False, 'connection_refused')
    """
    if isinstance(error, LLMConnectionError):
        return error.retryable, "connection_error" if error.retryable else "connection_refused"
    if isinstance(error, LLMClientError):
        return False, "client_error"

    if is_connection_refused(error):
        return False, "connection_refused"

    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if any(t in error_type for t in ("timeout", "connection", "network", "socket")):
        return True, "connection_error"

    if any(t in error_type for t in ("auth", "permission", "badrequest", "invalid")):
        return False, "client_error"

    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern in error_str:
            return False, f"non_retryable:{pattern}"

    for pattern in RETRYABLE_PATTERNS:
        if pattern in error_str:
            return True, f"retryable:{pattern}"

    # Default: retry unknown errors
    # 默认：重试未知错误
    return True, "unknown_error"


def get_retry_delay(
    attempt: int,
    base_delays: Optional[Sequence[float]] = None,
    max_delay: float = 60.0,
    jitter: float = 0.0,
) -> float:
    """
    计算指数退避重试延迟

    Calculate the retry delay with exponential backoff (1s, 2s, 4s, ...).

    Args:
        attempt: 当前尝试次数（从0开始） / Current attempt number (0-indexed)
        base_delays: 每次尝试的基础延迟列表（秒） / Base delay per attempt
        max_delay: 最大延迟（秒） / Maximum delay in seconds
        jitter: 抖动比例上限 / Upper bound of random jitter as a fraction of the delay

    Returns:
        延迟时间（秒） / Delay in seconds

    Example:
        >>> get_retry_delay(0)
        1.0
        >>> get_retry_delay(2)
        4.0
    """
    delays = list(base_delays or (1.0, 2.0, 4.0))

    if attempt < len(delays):
        delay = float(delays[attempt])
    else:
        delay = float(delays[-1]) * (2 ** (attempt - len(delays) + 1))

    delay = min(delay, max_delay)
    if jitter > 0:
        delay += delay * random.uniform(0, jitter)
    return delay
