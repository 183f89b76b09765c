"""
Prompt Templates / 提示词模板
Built-in system prompts for the conversational and edit tracks
对话轨道与编辑轨道的内置系统提示词
"""

from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles

from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

PROJECT_INSTRUCTIONS_HEADER = "\n\n# PROJECT INSTRUCTIONS\n\n"
COMPRESSED_HISTORY_PREFIX = "PREVIOUS CONVERSATION SUMMARY:\n"
RELEVANT_FILES_PREFIX = "RELEVANT FILES:\n\n"

NORMAL_SYSTEM_PROMPT = """You are a coding assistant working inside the user's project. You can read the relevant files shown below and propose concrete changes.

When you change the project, use these blocks. Use the EXACT path from the file header: if a file is shown as "--- src/utils/helper.js ---", write <path>src/utils/helper.js</path>, not <path>helper.js</path>.

<file_edit>
<path>path/to/file</path>
<operation>replace</operation>
<old>exact text currently in the file</old>
<new>replacement text</new>
</file_edit>

<file_create>
<path>path/to/new_file</path>
<content>full file content</content>
</file_create>

<file_delete>
<path>path/to/file</path>
</file_delete>

<task_update>
- DONE: a task you finished
- TODO: a new task
- IN_PROGRESS: the task you are working on
</task_update>

<question>Ask the user when the request is unclear</question>

If you need more code before answering:
<search>keyword1, keyword2</search>  (files up to 500 lines come back whole, larger files as snippets with line numbers)
<read_lines><path>path/to/file</path><start>10</start><end>80</end></read_lines>

If you need information from the web:
<web_search>query</web_search>
<web_fetch>https://example.com/page</web_fetch>

Rules:
- The <old> text must match the file exactly. Include enough surrounding lines to make it unique.
- Never guess at code you have not seen. Search or read it first.
- Keep explanations short and put them outside the blocks."""

TERSE_SYSTEM_PROMPT = """You are a coding assistant. Be concise. Use tags for actions:
<file_edit><path>file</path><operation>replace</operation><old>old code</old><new>new code</new></file_edit>
<file_create><path>file</path><content>content</content></file_create>
<file_delete><path>file</path></file_delete>
<task_update>
- DONE: completed task
- TODO: new task
</task_update>
<question>ask if unclear</question>
<search>keyword1, keyword2</search>
<read_lines><path>file</path><start>1</start><end>50</end></read_lines>
Use the EXACT path from the file header."""

EDIT_SYSTEM_PROMPT = """You are a precise code editor. Make the requested change safely and nothing else.

<file_edit>
<path>path/to/file</path>
<operation>replace</operation>
<old>exact text to find</old>
<new>replacement text</new>
</file_edit>

The <old> text must EXACTLY match what is in the file. Include enough context (10-20 lines) to make the match unique."""

TOOLS_ADDENDUM = """

You may also call the provided functions (search_code, read_file_lines, edit_file, create_file, delete_file, update_task) instead of writing tags."""

DEFAULT_PROMPTS = {
    "normal": NORMAL_SYSTEM_PROMPT,
    "terse": TERSE_SYSTEM_PROMPT,
    "edit": EDIT_SYSTEM_PROMPT,
}


def get_default_system_prompt(mode: str = "normal") -> str:
    return DEFAULT_PROMPTS.get(mode, NORMAL_SYSTEM_PROMPT)


async def load_system_prompt(prompts_cfg: Optional[Dict[str, Any]] = None, mode: Optional[str] = None) -> str:
    """
    解析系统提示词

    A configured template file wins when it exists; otherwise the built-in
    prompt for ``mode`` is used. An unreadable template logs a warning and
    falls back to the built-in text.
    """
    cfg = prompts_cfg or {}
    mode = mode or cfg.get("mode") or "normal"
    key = "terse_prompt_path" if mode == "terse" else "system_prompt_path"
    template = cfg.get(key)

    if template and Path(template).is_file():
        try:
            async with aiofiles.open(template, "r", encoding="utf-8") as f:
                return await f.read()
        except OSError as e:
            logger.warning("Failed to load system prompt from %s: %s", template, e)

    return get_default_system_prompt(mode)
