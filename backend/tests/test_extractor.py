"""Tests for action extraction from both output grammars."""
import json

import pytest

from coderelay.actions.extractor import (
    ParsedResponse,
    clean_path,
    describe_actions,
    extract_plain_text,
    get_action_summary,
    merge,
    parse_tagged,
    parse_task_lines,
    parse_tool_calls,
    split_keywords,
    tool_call_to_action,
    validate_action,
)
from coderelay.actions.tools import TOOL_TO_ACTION_KIND, get_tool_definitions, get_tool_schemas
from coderelay.context_engine.models import ToolCall
from coderelay.schemas.action import (
    CreateAction,
    DeleteAction,
    EditAction,
    ReadRangeRequest,
    SearchRequest,
    TaskUpdateAction,
    WebFetchRequest,
)
from coderelay.schemas.task import TaskStatus


def call(name, **arguments):
    return ToolCall(name=name, arguments=json.dumps(arguments), id=f"call_{name}")


class TestHelpers:
    def test_clean_path(self):
        assert clean_path('  --- "src/app.py" ---  ') == "src/app.py"
        assert clean_path("'a.py'") == "a.py"
        assert clean_path(None) == ""

    def test_split_keywords(self):
        assert split_keywords("auth, login\n token ,,") == ["auth", "login", "token"]

    def test_task_lines(self):
        updates = parse_task_lines(
            "- DONE: wire the router\n"
            "- todo: add tests\n"
            "- IN_PROGRESS: refactor\n"
            "- [ ] docs\n"
            "- ✓ shipped\n"
            "- plain item\n"
            "not a list line\n"
            "- TODO:\n"
        )
        assert [(u.description, u.status) for u in updates] == [
            ("wire the router", TaskStatus.COMPLETED),
            ("add tests", TaskStatus.PENDING),
            ("refactor", TaskStatus.IN_PROGRESS),
            ("docs", TaskStatus.PENDING),
            ("shipped", TaskStatus.COMPLETED),
            ("plain item", TaskStatus.PENDING),
        ]


class TestParseTagged:
    def test_edit_block(self):
        text = (
            "I'll fix it.\n"
            "<file_edit>\n<path>--- src/app.py ---</path>\n<operation>replace</operation>\n"
            "<old>\nx = 1\n</old>\n<new>\nx = 2\n</new>\n</file_edit>\n"
            "Done."
        )
        parsed = parse_tagged(text)
        assert parsed.actions == [EditAction(path="src/app.py", old_text="x = 1", new_text="x = 2")]
        assert parsed.has_actions is True
        assert parsed.plain_text == "I'll fix it.\n\nDone."

    def test_case_insensitive_tags(self):
        parsed = parse_tagged("<FILE_DELETE><PATH>old.py</PATH><REASON>unused</REASON></FILE_DELETE>")
        assert parsed.actions[0].path == "old.py"
        assert parsed.actions[0].reason == "unused"

    def test_non_replace_edit_skipped(self):
        parsed = parse_tagged(
            "<file_edit><path>a.py</path><operation>append</operation><old>x</old><new>y</new></file_edit>"
        )
        assert parsed.actions == []

    def test_create_keeps_content_verbatim(self):
        parsed = parse_tagged("<file_create><path>b.py</path><content>\nprint('hi')\n</content></file_create>")
        assert parsed.actions[0].content == "\nprint('hi')\n"

    def test_document_order_and_merged_search(self):
        text = (
            "<read_lines><path>a.py</path><start>1</start><end>20</end></read_lines>\n"
            "<search>auth</search>\n"
            "<task_update>\n- TODO: check auth\n</task_update>\n"
            "<search>login, token</search>\n"
            "<web_fetch>https://example.com</web_fetch>"
        )
        parsed = parse_tagged(text)
        kinds = [a.kind for a in parsed.actions]
        assert kinds == ["read_range", "search", "task_update", "web_fetch"]
        assert parsed.search_keywords == ["auth", "login", "token"]
        assert parsed.needs_follow_up is True
        assert parsed.has_actions is True

    def test_malformed_read_lines_skipped(self):
        parsed = parse_tagged(
            "<read_lines><path>a.py</path><start>one</start><end>5</end></read_lines>"
            "<read_lines><path>b.py</path><start>3</start><end>4</end></read_lines>"
        )
        assert parsed.actions == [ReadRangeRequest(path="b.py", start_line=3, end_line=4)]

    def test_questions(self):
        parsed = parse_tagged("Hmm.\n<question>Which file?</question>")
        assert parsed.questions == ["Which file?"]
        assert parsed.actions == []
        assert parsed.plain_text == "Hmm."

    def test_plain_response(self):
        parsed = parse_tagged("Just an explanation.")
        assert parsed.actions == []
        assert parsed.needs_follow_up is False
        assert parsed.plain_text == "Just an explanation."

    def test_empty(self):
        parsed = parse_tagged(None)
        assert parsed.actions == []
        assert parsed.plain_text == ""

    def test_stray_tags_removed(self):
        assert extract_plain_text("a <path>x</path>\n\n\n\nb") == "a x\n\nb"


class TestToolCalls:
    def test_every_tool_maps_to_an_action(self):
        names = {d.name for d in get_tool_definitions(include_web=True)}
        assert names == set(TOOL_TO_ACTION_KIND)

    def test_schemas(self):
        schemas = get_tool_schemas()
        assert all(s["type"] == "function" for s in schemas)
        assert "web_search" not in {s["function"]["name"] for s in schemas}
        assert "fetch_url" in {s["function"]["name"] for s in get_tool_schemas(include_web=True)}

    def test_edit_call(self):
        action = tool_call_to_action("edit_file", {"path": "a.py", "old_text": "x", "new_text": "y"})
        assert action == EditAction(path="a.py", old_text="x", new_text="y")

    def test_read_call_coerces_numbers(self):
        action = tool_call_to_action("read_file_lines", {"path": "a.py", "start_line": "3", "end_line": 9})
        assert action == ReadRangeRequest(path="a.py", start_line=3, end_line=9)

    def test_invalid_calls(self):
        assert tool_call_to_action("rm_rf", {}) is None
        assert tool_call_to_action("edit_file", {"path": "a.py", "new_text": "y"}) is None
        assert tool_call_to_action("read_file_lines", {"path": "a.py", "start_line": 9, "end_line": 3}) is None
        assert tool_call_to_action("fetch_url", {"url": "ftp://x"}) is None
        assert tool_call_to_action("update_task", {"description": "x", "status": "someday"}) is None

    def test_search_string_keywords(self):
        action = tool_call_to_action("search_code", {"keywords": "a, b"})
        assert action == SearchRequest(keywords=["a", "b"])

    def test_parse_calls_skips_bad_arguments(self):
        calls = [
            call("search_code", keywords=["auth"]),
            ToolCall(name="edit_file", arguments="{not json", id="bad"),
            call("update_task", description="add tests", status="completed"),
            call("search_code", keywords=["login"]),
            call("fetch_url", url="https://docs.example.com"),
        ]
        parsed = parse_tool_calls(calls, content="Looking around.")
        assert [a.kind for a in parsed.actions] == ["search", "task_update", "web_fetch"]
        assert parsed.search_keywords == ["auth", "login"]
        assert parsed.actions[1].status == TaskStatus.COMPLETED
        assert parsed.actions[2] == WebFetchRequest(url="https://docs.example.com")
        assert parsed.plain_text == "Looking around."

    def test_fenced_arguments(self):
        calls = [ToolCall(name="delete_file", arguments='```json\n{"path": "old.py"}\n```', id="c1")]
        parsed = parse_tool_calls(calls)
        assert parsed.actions[0].path == "old.py"

    def test_empty_arguments(self):
        parsed = parse_tool_calls([ToolCall(name="search_code", arguments="", id="c1")])
        assert parsed.actions == []


GRAMMAR_PAIRS = [
    pytest.param(
        "<file_edit><path>a.py</path><operation>replace</operation>"
        "<old>\n    return x\n</old><new>\n    return y\n</new></file_edit>",
        "edit_file", {"path": "a.py", "old_text": "    return x\n", "new_text": "    return y\n"},
        [EditAction(path="a.py", old_text="return x", new_text="return y")],
        id="indented-edit",
    ),
    pytest.param(
        "<file_edit><path>a.py</path><operation>replace</operation><old>   </old><new>y</new></file_edit>",
        "edit_file", {"path": "a.py", "old_text": "   ", "new_text": "y"},
        [],
        id="blank-old-text",
    ),
    pytest.param(
        "<file_create><path>b.py</path><content>x = 1\n</content></file_create>",
        "create_file", {"path": "b.py", "content": "x = 1\n"},
        [CreateAction(path="b.py", content="x = 1\n")],
        id="create",
    ),
    pytest.param(
        "<file_delete><path>c.py</path><reason>unused</reason></file_delete>",
        "delete_file", {"path": "c.py", "reason": "unused"},
        [DeleteAction(path="c.py", reason="unused")],
        id="delete",
    ),
    pytest.param(
        "<task_update>- DONE: ship it</task_update>",
        "update_task", {"description": "ship it", "status": "completed"},
        [TaskUpdateAction(description="ship it", status=TaskStatus.COMPLETED)],
        id="task",
    ),
    pytest.param(
        "<search>auth, login</search>",
        "search_code", {"keywords": ["auth", "login"]},
        [SearchRequest(keywords=["auth", "login"])],
        id="search",
    ),
    pytest.param(
        "<read_lines><path>a.py</path><start>3</start><end>9</end></read_lines>",
        "read_file_lines", {"path": "a.py", "start_line": 3, "end_line": 9},
        [ReadRangeRequest(path="a.py", start_line=3, end_line=9)],
        id="read-range",
    ),
    pytest.param(
        "<read_lines><path>a.py</path><start>5</start><end>3</end></read_lines>",
        "read_file_lines", {"path": "a.py", "start_line": 5, "end_line": 3},
        [],
        id="reversed-range",
    ),
    pytest.param(
        "<read_lines><path>a.py</path><start>0</start><end>3</end></read_lines>",
        "read_file_lines", {"path": "a.py", "start_line": 0, "end_line": 3},
        [],
        id="zero-start",
    ),
    pytest.param(
        "<web_fetch>ftp://example.com</web_fetch>",
        "fetch_url", {"url": "ftp://example.com"},
        [],
        id="non-http-url",
    ),
]


@pytest.mark.parametrize("tagged, tool_name, arguments, expected", GRAMMAR_PAIRS)
def test_both_grammars_agree(tagged, tool_name, arguments, expected):
    from_tags = parse_tagged(tagged).actions
    from_calls = parse_tool_calls([call(tool_name, **arguments)]).actions
    assert from_tags == expected
    assert from_calls == expected


class TestMergeAndSummary:
    def test_merge_keeps_one_search(self):
        first = parse_tagged("<search>a</search><file_delete><path>x.py</path></file_delete>")
        second = parse_tagged("<search>b</search>")
        combined = merge(first, second)
        assert [a.kind for a in combined.actions] == ["search", "delete"]
        assert combined.search_keywords == ["a", "b"]

    def test_summary(self):
        parsed = parse_tagged(
            "<file_edit><path>a</path><operation>replace</operation><old>1</old><new>2</new></file_edit>"
            "<file_edit><path>b</path><operation>replace</operation><old>1</old><new>2</new></file_edit>"
            "<task_update>- DONE: x</task_update>"
        )
        assert get_action_summary(parsed) == "2 file edit(s), 1 task update(s)"
        assert get_action_summary(ParsedResponse()) == "No actions"

    def test_describe(self):
        parsed = parse_tagged(
            "<file_create><path>n.py</path><content>x</content></file_create>"
            "<task_update>- IN_PROGRESS: wiring</task_update>"
            "<read_lines><path>a.py</path><start>1</start><end>2</end></read_lines>"
            "<web_search>pydantic discriminator</web_search>"
        )
        assert describe_actions(parsed.actions) == [
            "create n.py",
            "task [in-progress] wiring",
            "read a.py:1-2",
            "web search pydantic discriminator",
        ]

    def test_validate_action(self):
        assert validate_action(EditAction(path="a", old_text="", new_text="b")) == (
            False,
            "Replace operation requires old text",
        )
        assert validate_action(SearchRequest(keywords=["x"])) == (True, "")
        assert validate_action(object()) == (False, "Not an action")
