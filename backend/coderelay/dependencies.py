# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  依赖注入工厂 - FastAPI Depends() 工厂函数，管理按项目根目录区分的会话注册表
  Dependency Injection - FastAPI Depends() factories for the session registry keyed by
  resolved project root.

设计原则 / Design Principles:
  所有Router应通过 Depends() 获取注册表，测试中可通过 dependency_overrides 替换。
  Routers obtain the registry through Depends() so tests can override it.
"""

import asyncio
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from coderelay.llm_gateway.gateway import LLMGateway
from coderelay.session import Session, WebClient
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)


class SessionRegistry:
    """
    会话注册表 / Open sessions keyed by resolved project root

    Attributes:
        gateway_factory: 为新会话创建网关的工厂，None 时按配置创建
        web: 可选的网络协作者 / Optional web collaborator shared by sessions
    """

    def __init__(
        self,
        gateway_factory: Optional[Callable[[], LLMGateway]] = None,
        cfg: Optional[Dict[str, Any]] = None,
        web: Optional[WebClient] = None,
        auto_index: bool = True,
    ):
        self.gateway_factory = gateway_factory
        self.cfg = cfg
        self.web = web
        self.auto_index = auto_index
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def key(project_root: Union[str, Path]) -> str:
        return str(Path(project_root).expanduser().resolve())

    async def open(self, project_root: Union[str, Path]) -> Session:
        """获取或打开会话 / Return the open session for a root, opening it if needed."""
        key = self.key(project_root)
        async with self._lock:
            session = self._sessions.get(key)
            if session is None:
                gateway = self.gateway_factory() if self.gateway_factory else None
                session = await Session.open(
                    key, gateway=gateway, cfg=self.cfg, web=self.web, auto_index=self.auto_index
                )
                self._sessions[key] = session
            return session

    def get(self, project_root: Union[str, Path]) -> Optional[Session]:
        return self._sessions.get(self.key(project_root))

    async def close(self, project_root: Union[str, Path]) -> bool:
        async with self._lock:
            session = self._sessions.pop(self.key(project_root), None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()

    def list_roots(self) -> List[str]:
        return sorted(self._sessions)


@lru_cache(maxsize=1)
def get_session_registry() -> SessionRegistry:
    """
    获取或创建会话注册表的单例实例

    Get or create the singleton SessionRegistry instance.
    """
    return SessionRegistry()
