# -*- coding: utf-8 -*-
"""
CodeRelay - 面向本地大模型的代码库上下文引擎
CodeRelay - Codebase Context Engine for Local Language Models

Copyright © 2025-2026 CodeRelay Team
License: PolyForm Noncommercial License 1.0.0

模块说明 / Module Description:
  模型输出解析工具 - 从本地模型返回的函数调用参数中弹性提取 JSON 对象
  Model Output Helpers - Resilient JSON extraction for function-call arguments returned
  by local models, which often wrap them in code fences or trailing prose.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Optional, Tuple

FENCE = "```"
FENCE_LANGS = {"json", "jsonc", "javascript", "js"}


def parse_json_payload(
    text: Any,
    expected_type: Optional[type] = None,
) -> Tuple[Optional[Any], str]:
    """
    解析可能带噪声的 JSON

    Tries the text as-is, then every fenced block, then every balanced
    ``{...}`` / ``[...]`` segment found inside those candidates.

    Returns:
        (数据, 错误码) - error code is "" on success, otherwise
        "empty_response" or "json_parse_failed"

    Example:
        >>> parse_json_payload('{"path": "a.py"}')
        ({'path': 'a.py'}, '')
        >>> parse_json_payload('sure: {"path": "a.py"} done')
        ({'path': 'a.py'}, '')
        >>> parse_json_payload('nope')
        (None, 'json_parse_failed')
    """
    if isinstance(text, (dict, list)):
        if expected_type is None or isinstance(text, expected_type):
            return text, ""
        return None, "json_parse_failed"

    if text is None or not str(text).strip():
        return None, "empty_response"

    for candidate in _candidates(str(text)):
        data = _loads(candidate, expected_type)
        if data is not None:
            return data, ""
        for segment in _balanced_segments(candidate):
            data = _loads(segment, expected_type)
            if data is not None:
                return data, ""

    return None, "json_parse_failed"


def parse_tool_arguments(raw: Any) -> Tuple[Optional[Dict[str, Any]], str]:
    """
    解析函数调用参数

    Arguments must decode to a JSON object. An empty argument string means a
    call without arguments and yields ``{}``.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}, ""
    return parse_json_payload(raw, expected_type=dict)


def _loads(text: str, expected_type: Optional[type]) -> Optional[Any]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    if expected_type is not None and not isinstance(data, expected_type):
        return None
    return data


def _candidates(text: str) -> Iterator[str]:
    cleaned = text.strip()
    yield cleaned

    if FENCE not in cleaned:
        return

    # odd-numbered parts are inside fences
    parts = cleaned.split(FENCE)
    for block in parts[1::2]:
        block = block.strip()
        first, _, rest = block.partition("\n")
        if first.strip().lower() in FENCE_LANGS:
            block = rest.strip()
        if block:
            yield block


def _balanced_segments(text: str) -> Iterator[str]:
    pairs = {"{": "}", "[": "]"}
    for start, opener in enumerate(text):
        if opener not in pairs:
            continue
        expected = []
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch in pairs:
                expected.append(pairs[ch])
            elif ch in "}]":
                if not expected or expected.pop() != ch:
                    break
                if not expected:
                    yield text[start:idx + 1]
                    break
