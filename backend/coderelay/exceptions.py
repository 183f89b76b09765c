# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  应用级异常层次 - 定义核心引擎异常的完整继承树
  Application-level Exception Hierarchy - Core engine exception definitions.
"""

from typing import Any, List, Optional


class CodeRelayError(Exception):
    """
    CodeRelay 业务错误的基类

    Base exception for all CodeRelay errors.

    所有应用级异常都应继承此类，以便于统一错误处理。
    """


class StorageError(CodeRelayError):
    """
    存储操作失败异常

    Raised when reading or writing a persisted ledger document fails.
    """


class LLMError(CodeRelayError):
    """
    LLM调用失败异常

    Raised when a model call fails (timeout, refused connection, bad response).
    """


class LLMConnectionError(LLMError):
    """
    无法连接模型端点 / The model endpoint could not be reached.

    ``hint`` carries a remediation message that is shown to the user as-is.
    """

    def __init__(self, message: str, hint: str = "", retryable: bool = True):
        super().__init__(message)
        self.hint = hint
        self.retryable = retryable


class LLMClientError(LLMError):
    """
    请求本身有误（参数错误等），不会重试

    Malformed request rejected by the endpoint. Never retried.
    """


class RequestCancelledError(LLMError):
    """
    请求被用户取消 / The in-flight model call was cancelled.
    """


class IndexingError(CodeRelayError):
    """
    索引构建或读取失败

    Raised when the codebase index cannot be built or read.
    """


class LineRangeError(IndexingError, ValueError):
    """
    行范围无效 / Invalid 1-indexed line range request.

    抛出时机：
    - start > end
    - start 超出文件末尾 / start beyond end of file
    """


class PathResolutionError(CodeRelayError):
    """
    路径解析失败 / A referenced file path could not be resolved.

    ``candidates`` lists the ambiguous matches (empty when nothing matched).
    """

    def __init__(self, message: str, attempted_path: str = "", candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.attempted_path = attempted_path
        self.candidates = list(candidates or [])


class ActionExecutionError(CodeRelayError):
    """
    动作批处理执行失败 / An action in a batch failed.

    The batch is fail-fast: ``applied`` holds the actions that already took
    effect, ``failed`` the action that raised and ``skipped`` the rest.
    """

    def __init__(
        self,
        message: str,
        failed: Any = None,
        applied: Optional[List[Any]] = None,
        skipped: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.failed = failed
        self.applied = list(applied or [])
        self.skipped = list(skipped or [])
