# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  配置加载 - 进程级设置（环境变量）与业务配置（config.yaml）
  Configuration - process settings from environment variables and engine config from config.yaml.

使用示例 / Usage:
    from coderelay.config import settings, config

    threshold = config["context_management"]["compression_threshold"]
    if settings.debug:
        ...
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field


_BACKEND_ROOT = Path(__file__).resolve().parent.parent

WORKSPACE_DIR_NAME = ".coderelay"


class Settings(BaseModel):
    """
    进程级设置 / Process-level settings

    Values come from ``CODERELAY_*`` environment variables.
    """

    debug: bool = Field(default=False, description="Enable debug logging")
    host: str = Field(default="127.0.0.1", description="HTTP bind host")
    port: int = Field(default=8765, description="HTTP port")
    log_dir: str = Field(default=str(_BACKEND_ROOT / "logs"), description="Log directory")
    config_path: str = Field(default=str(_BACKEND_ROOT / "config.yaml"), description="Engine config file")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment."""
        values: Dict[str, Any] = {}
        env_map = {
            "debug": "CODERELAY_DEBUG",
            "host": "CODERELAY_HOST",
            "port": "CODERELAY_PORT",
            "log_dir": "CODERELAY_LOG_DIR",
            "config_path": "CODERELAY_CONFIG",
        }
        for field_name, env_name in env_map.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            if field_name == "debug":
                values[field_name] = raw.strip().lower() in {"1", "true", "yes", "on"}
            else:
                values[field_name] = raw
        return cls(**values)


# 默认业务配置 / Built-in engine defaults
DEFAULT_CONFIG: Dict[str, Any] = {
    "llm": {
        "base_url": "http://localhost:1234/v1",
        "api_key": "lm-studio",
        "model": "local-model",
        "temperature": 0.7,
        "max_tokens": 4096,
        "retries": 3,
        "use_tools": True,
    },
    "context_management": {
        "compression_threshold": 0.7,
        "recent_messages_count": 5,
        "max_files_in_context": 5,
        "response_reserve": 800,
    },
    "context_budget": {
        "system_prompt": 0.05,
        "task_list": 0.05,
        "compressed_history": 0.20,
        "recent_history": 0.30,
        "file_contents": 0.35,
        "user_query": 0.05,
    },
    "tokens": {
        "encoding": "cl100k_base",
        "use_tiktoken": True,
        "chars_per_token": 3.5,
        "message_overhead": 4,
        "reply_overhead": 2,
        "truncate_chunk_chars": 100,
    },
    "codebase": {
        "exclude_patterns": [
            "node_modules", ".git", "dist", "build", "data", WORKSPACE_DIR_NAME,
            "__pycache__", ".venv",
        ],
        "exclude_extensions": [
            ".exe", ".dll", ".so", ".dylib", ".bin", ".zip", ".tar", ".gz", ".rar", ".7z",
            ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".png", ".jpg",
            ".jpeg", ".gif", ".bmp", ".ico", ".svg", ".mp3", ".mp4", ".wav", ".avi",
            ".mov", ".mkv", ".obj", ".o", ".a", ".lib", ".pyc", ".class", ".jar",
        ],
        "max_file_size": 500_000,
        "stale_after_hours": 24,
    },
    "search": {
        "context_lines": 3,
        "edit_context_lines": 25,
        "function_context_lines": 50,
        "small_file_threshold": 500,
        "max_search_results": 5,
        "max_snippets_per_file": 3,
    },
    "prompts": {
        "mode": "normal",
        "system_prompt_path": None,
        "terse_prompt_path": None,
    },
    "edit_track": {
        "enabled": False,
        "use_for_files_larger_than": 300,
        "always": False,
    },
}


def deep_merge(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    递归合并配置 / Recursively merge ``override`` into a copy of ``base``.

    Nested dicts are merged key by key, everything else is replaced.
    """
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[Path] = None, base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    加载 YAML 配置并合并到默认值 / Load a YAML config file over the defaults.

    A missing file yields the defaults unchanged. A file that is not a mapping
    raises ``ValueError``.
    """
    merged_base = base if base is not None else DEFAULT_CONFIG
    if path is None or not Path(path).exists():
        return deep_merge(merged_base, None)

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")

    return deep_merge(merged_base, data)


settings = Settings.from_env()
config: Dict[str, Any] = load_config(Path(settings.config_path))
