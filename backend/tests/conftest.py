"""Pytest configuration for CodeRelay backend tests."""
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure the backend package is importable
backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from coderelay.config import DEFAULT_CONFIG, deep_merge  # noqa: E402
from coderelay.context_engine.token_counter import TokenCounter  # noqa: E402
from coderelay.llm_gateway.providers.base import BaseLLMProvider  # noqa: E402


class FakeProvider(BaseLLMProvider):
    """Scripted provider: each chat() pops the next reply (str or raw dict)."""

    def __init__(self, replies: Optional[List[Any]] = None, context_length: Optional[int] = 8192):
        super().__init__(api_key="test", model="local-model")
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []
        self.context_length = context_length

    def get_provider_name(self) -> str:
        return "fake"

    def _next(self) -> Any:
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def chat(self, messages, temperature=None, max_tokens=None, tools=None) -> Dict[str, Any]:
        self.calls.append({"messages": list(messages), "tools": tools})
        reply = self._next()
        if isinstance(reply, dict):
            return {"usage": {"prompt_tokens": 100}, **reply}
        return {"content": reply, "tool_calls": [], "usage": {"prompt_tokens": 100}, "finish_reason": "stop"}

    async def stream_chat(self, messages, temperature=None, max_tokens=None):
        self.calls.append({"messages": list(messages), "tools": None})
        reply = self._next()
        text = reply.get("content", "") if isinstance(reply, dict) else reply
        for i in range(0, len(text), 8):
            yield text[i:i + 8]

    async def list_models(self) -> List[Dict[str, Any]]:
        if self.context_length is None:
            return []
        return [{"id": "local-model", "context_length": self.context_length}]


class FakeSummarizer:
    def __init__(self, summary: str = "- summary", error: Optional[Exception] = None):
        self.summary = summary
        self.error = error
        self.calls: List[str] = []

    async def summarize(self, text: str, instructions: str) -> str:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.summary


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def counter():
    return TokenCounter(use_tiktoken=False)


@pytest.fixture
def engine_config():
    """Engine config with tool calling off and estimation-only token counting."""
    return deep_merge(DEFAULT_CONFIG, {
        "llm": {"use_tools": False},
        "tokens": {"use_tiktoken": False},
    })


@pytest.fixture
def project(tmp_path):
    """A small mixed-language project."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "node_modules" / "lib").mkdir(parents=True)
    (root / "src" / "server.js").write_text(
        "import net from 'net';\n"
        "export function connectToServer(host) {\n"
        "  return net.connect(host);\n"
        "}\n",
        encoding="utf-8",
    )
    (root / "src" / "utils.py").write_text(
        "import os\n\n\ndef helper():\n    return os.getcwd()\n\n\nclass Config:\n    pass\n",
        encoding="utf-8",
    )
    (root / "README.md").write_text("# Demo\n\nA demo project.\n", encoding="utf-8")
    (root / "node_modules" / "lib" / "index.js").write_text("function hidden() {}\n", encoding="utf-8")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n")
    return root
