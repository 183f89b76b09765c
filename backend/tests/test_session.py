"""End-to-end tests for the per-project session with a scripted model."""
import json

import pytest

from conftest import FakeProvider, no_sleep
from coderelay.config import deep_merge
from coderelay.exceptions import ActionExecutionError, RequestCancelledError
from coderelay.llm_gateway.gateway import CancellationToken, LLMGateway
from coderelay.schemas.action import CreateAction, DeleteAction, EditAction, TaskUpdateAction
from coderelay.session import WEB_UNAVAILABLE, Session


class FakeWeb:
    def __init__(self, error=None):
        self.error = error
        self.queries = []

    async def search(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return f"results for {query}"

    async def fetch(self, url):
        return f"page {url}"


def make_gateway(replies, context_length=8192):
    provider = FakeProvider(replies, context_length=context_length)
    return provider, LLMGateway(provider, sleep=no_sleep)


async def open_session(project, engine_config, counter, replies, web=None, context_length=8192):
    provider, gateway = make_gateway(replies, context_length)
    session = await Session.open(project, gateway=gateway, cfg=engine_config, web=web, counter=counter)
    return provider, session


class TestOpen:
    @pytest.mark.asyncio
    async def test_open_indexes_and_creates_workspace(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, [])
        assert sorted(session.indexer.entries) == ["README.md", "src/server.js", "src/utils.py"]
        assert (project / ".coderelay" / "codebase_index.json").exists()
        stats = session.stats()
        assert stats["status"] == "idle"
        assert stats["index"]["file_count"] == 3
        assert stats["tasks"]["total"] == 0

    @pytest.mark.asyncio
    async def test_missing_root(self, tmp_path, engine_config, counter):
        with pytest.raises(FileNotFoundError):
            await Session.open(tmp_path / "nope", gateway=make_gateway([])[1], cfg=engine_config, counter=counter)

    @pytest.mark.asyncio
    async def test_project_config_and_instructions(self, project, engine_config, counter):
        workspace = project / ".coderelay"
        workspace.mkdir()
        (workspace / "config.yaml").write_text("search:\n  max_search_results: 1\n", encoding="utf-8")
        (workspace / "INSTRUCTIONS.md").write_text("Always use type hints.\n", encoding="utf-8")

        _, session = await open_session(project, engine_config, counter, [])
        assert session.max_search_results == 1
        assert session.assembler.instructions == "Always use type hints."
        assert "Always use type hints." in await session.assembler.build_system_prompt()

    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, ["First answer."])
        await session.process_query("hello")
        await session.execute_actions([TaskUpdateAction(description="Write docs")])
        await session.close()

        _, reopened = await open_session(project, engine_config, counter, [])
        assert [m.content for m in reopened.ledger.full] == ["hello", "First answer."]
        assert [t.description for t in reopened.tasks.pending()] == ["Write docs"]
        assert reopened.assembler.tasks is reopened.tasks
        assert reopened.executor.tasks is reopened.tasks


class TestProcessQuery:
    @pytest.mark.asyncio
    async def test_plain_answer_recorded(self, project, engine_config, counter):
        chunks = []
        provider, session = await open_session(project, engine_config, counter, ["The server connects via net."])
        result = await session.process_query("How does the server connect?", on_chunk=chunks.append)

        assert result.response == "The server connects via net."
        assert "".join(chunks) == result.response
        assert result.follow_up is False
        assert result.parsed.actions == []
        assert [m.role for m in session.ledger.full] == ["user", "assistant"]
        sent = provider.calls[0]["messages"]
        assert sent[-1] == {"role": "user", "content": "How does the server connect?"}

        saved = json.loads((project / ".coderelay" / "conversation_history.json").read_text(encoding="utf-8"))
        assert len(saved["history"]["full"]) == 2

    @pytest.mark.asyncio
    async def test_search_follow_up(self, project, engine_config, counter):
        edit = (
            "Updating it.\n<file_edit><path>src/server.js</path><operation>replace</operation>"
            "<old>net.connect(host)</old><new>net.connect({ host })</new></file_edit>"
        )
        provider, session = await open_session(
            project, engine_config, counter, ["<search>connectToServer</search>", edit]
        )
        result = await session.process_query("Make connect take an options object")

        assert result.follow_up is True
        assert len(provider.calls) == 2
        follow = provider.calls[1]["messages"][-1]["content"]
        assert follow.startswith('Original query: "Make connect take an options object"')
        assert "SEARCH RESULTS:" in follow
        assert "--- src/server.js ---" in follow
        assert follow.endswith("Now please provide your response based on the above information.")

        assert result.parsed.actions == [
            EditAction(path="src/server.js", old_text="net.connect(host)", new_text="net.connect({ host })")
        ]
        # proposals are never applied by the query itself
        assert "net.connect(host)" in (project / "src" / "server.js").read_text(encoding="utf-8")
        assert session.ledger.full[-1].content == edit

    @pytest.mark.asyncio
    async def test_no_matches_still_follows_up(self, project, engine_config, counter):
        provider, session = await open_session(project, engine_config, counter, ["<search>zzz_missing</search>", "Nothing found."])
        result = await session.process_query("find zzz")
        assert "No matches found for: zzz_missing" in provider.calls[1]["messages"][-1]["content"]
        assert result.response == "Nothing found."

    @pytest.mark.asyncio
    async def test_read_lines_follow_up(self, project, engine_config, counter):
        provider, session = await open_session(
            project, engine_config, counter,
            ["<read_lines><path>src/utils.py</path><start>4</start><end>5</end></read_lines>", "ok"],
        )
        await session.process_query("show helper")
        follow = provider.calls[1]["messages"][-1]["content"]
        assert "REQUESTED FILE SECTIONS:" in follow
        assert "Lines 4-5 (of 9 total)" in follow

    @pytest.mark.asyncio
    async def test_web_unavailable(self, project, engine_config, counter):
        provider, session = await open_session(
            project, engine_config, counter, ["<web_search>fastapi lifespan</web_search>", "ok"]
        )
        await session.process_query("how do lifespans work")
        assert WEB_UNAVAILABLE in provider.calls[1]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_web_client_used(self, project, engine_config, counter):
        web = FakeWeb()
        provider, session = await open_session(
            project, engine_config, counter, ["<web_search>fastapi lifespan</web_search>", "ok"], web=web
        )
        await session.process_query("how do lifespans work")
        assert web.queries == ["fastapi lifespan"]
        assert 'WEB SEARCH RESULTS FOR "fastapi lifespan":\nresults for fastapi lifespan' in (
            provider.calls[1]["messages"][-1]["content"]
        )

    @pytest.mark.asyncio
    async def test_web_failure_reported(self, project, engine_config, counter):
        provider, session = await open_session(
            project, engine_config, counter,
            ["<web_search>x</web_search>", "ok"], web=FakeWeb(error=RuntimeError("dns"))
        )
        await session.process_query("q")
        assert "FAILED: dns" in provider.calls[1]["messages"][-1]["content"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, ["never seen text"])
        token = CancellationToken()
        token.cancel()
        with pytest.raises(RequestCancelledError):
            await session.process_query("q", cancel=token)
        assert session.ledger.full == []
        assert session.status.value == "idle"

    @pytest.mark.asyncio
    async def test_cancelled_mid_stream(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, ["a long streamed answer here"])
        token = CancellationToken()
        with pytest.raises(RequestCancelledError):
            await session.process_query("q", cancel=token, on_chunk=lambda _chunk: token.cancel())
        assert session.ledger.full == []


class TestToolCalling:
    @pytest.mark.asyncio
    async def test_tool_round(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"llm": {"use_tools": True}})
        first = {
            "content": "",
            "tool_calls": [
                {"id": "c1", "name": "search_code", "arguments": json.dumps({"keywords": ["helper"]})},
                {
                    "id": "c2",
                    "name": "edit_file",
                    "arguments": json.dumps({"path": "src/utils.py", "old_text": "pass", "new_text": "x = 1"}),
                },
                {"id": "c3", "name": "read_file_lines", "arguments": "{broken"},
            ],
        }
        provider, session = await open_session(project, cfg, counter, [first, "Done."])
        result = await session.process_query("edit the config class")

        assert result.used_tools is True
        assert result.response == "Done."
        assert result.parsed.actions == [EditAction(path="src/utils.py", old_text="pass", new_text="x = 1")]

        offered = {t["function"]["name"] for t in provider.calls[0]["tools"]}
        assert "search_code" in offered
        assert "web_search" not in offered

        second = provider.calls[1]["messages"]
        assert second[-4]["role"] == "assistant"
        assert [m["tool_call_id"] for m in second[-3:]] == ["c1", "c2", "c3"]
        assert "--- src/utils.py ---" in second[-3]["content"]
        assert second[-2]["content"].startswith("Recorded.")
        assert second[-1]["content"].startswith("Error: could not use read_file_lines")


class TestEditTrackRefinement:
    EDIT = (
        "<file_edit><path>utils.py</path><operation>replace</operation>"
        "<old>class Config:</old><new>class Settings:</new></file_edit>"
    )

    @pytest.mark.asyncio
    async def test_refined_edit_replaces_original(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"edit_track": {"enabled": True, "always": True}})
        refined = (
            "<file_edit><path>src/utils.py</path><operation>replace</operation>"
            "<old>class Config:\n    pass</old><new>class Settings:\n    pass</new></file_edit>"
        )
        provider, session = await open_session(project, cfg, counter, [self.EDIT, refined])
        result = await session.process_query("rename Config")

        assert len(provider.calls) == 2
        assert provider.calls[1]["messages"][1]["content"].startswith("FILE TO EDIT:\n\n--- src/utils.py ---")
        assert result.parsed.actions == [
            EditAction(path="src/utils.py", old_text="class Config:\n    pass", new_text="class Settings:\n    pass")
        ]

    @pytest.mark.asyncio
    async def test_small_file_keeps_original(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"edit_track": {"enabled": True}})
        provider, session = await open_session(project, cfg, counter, [self.EDIT])
        result = await session.process_query("rename Config")
        assert len(provider.calls) == 1
        assert result.parsed.actions[0].path == "utils.py"

    @pytest.mark.asyncio
    async def test_no_edit_in_refinement_keeps_original(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"edit_track": {"enabled": True, "always": True}})
        _, session = await open_session(project, cfg, counter, [self.EDIT, "I could not do that."])
        result = await session.process_query("rename Config")
        assert result.parsed.actions[0].old_text == "class Config:"


class TestCommands:
    @pytest.mark.asyncio
    async def test_execute_actions_and_index_upkeep(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, [])
        report = await session.execute_actions([
            CreateAction(path="src/extra.py", content="def extra():\n    pass\n"),
            TaskUpdateAction(description="Review extra"),
        ])
        assert report.changed_paths == ["src/extra.py"]
        assert session.indexer.find_definition("extra")[0].path == "src/extra.py"
        saved = json.loads((project / ".coderelay" / "task_list.json").read_text(encoding="utf-8"))
        assert saved["tasks"][0]["description"] == "Review extra"

    @pytest.mark.asyncio
    async def test_failed_batch_still_checkpoints(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, [])
        with pytest.raises(ActionExecutionError):
            await session.execute_actions([
                TaskUpdateAction(description="first"),
                DeleteAction(path="nowhere.txt"),
            ])
        saved = json.loads((project / ".coderelay" / "task_list.json").read_text(encoding="utf-8"))
        assert [t["description"] for t in saved["tasks"]] == ["first"]

    @pytest.mark.asyncio
    async def test_edit_track(self, project, engine_config, counter):
        reply = (
            "<file_edit><path>src/utils.py</path><operation>replace</operation>"
            "<old>class Config:</old><new>class Settings:</new></file_edit>"
        )
        provider, session = await open_session(project, engine_config, counter, [reply])
        result = await session.process_edit("utils.py", "rename Config to Settings")
        user = provider.calls[0]["messages"][1]["content"]
        assert user.startswith("FILE TO EDIT:\n\n--- src/utils.py ---\n")
        assert user.endswith("INSTRUCTION:\nrename Config to Settings")
        assert result.parsed.actions[0].kind == "edit"
        assert session.ledger.full == []

    @pytest.mark.asyncio
    async def test_rebuild_index_ignores_workspace(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, [])
        (project / "src" / "late.py").write_text("def late():\n    pass\n", encoding="utf-8")
        assert await session.rebuild_index() == 4
        assert not any(p.startswith(".coderelay") for p in session.indexer.entries)

    @pytest.mark.asyncio
    async def test_clear_history(self, project, engine_config, counter):
        _, session = await open_session(project, engine_config, counter, ["answer"])
        await session.process_query("q")
        await session.clear_history()
        assert session.ledger.full == []
        saved = json.loads((project / ".coderelay" / "conversation_history.json").read_text(encoding="utf-8"))
        assert saved["history"]["full"] == []


class TestCompression:
    @pytest.mark.asyncio
    async def test_compresses_after_exchange(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"context_management": {"recent_messages_count": 1}})
        _, session = await open_session(
            project, cfg, counter, ["x" * 400, "- user asked q"], context_length=100
        )
        result = await session.process_query("q")
        assert result.compressed is True
        assert session.ledger.compressed == "- user asked q"
        assert [m.role for m in session.ledger.full] == ["assistant"]

    @pytest.mark.asyncio
    async def test_compression_failure_is_a_warning(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"context_management": {"recent_messages_count": 1}})
        _, session = await open_session(
            project, cfg, counter, ["x" * 400, Exception("Error code: 400 bad request")], context_length=100
        )
        result = await session.process_query("q")
        assert result.compressed is False
        assert result.warnings == ["History compression failed; full history kept"]
        assert len(session.ledger.full) == 2

    @pytest.mark.asyncio
    async def test_manual_compress(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"context_management": {"recent_messages_count": 1}})
        _, session = await open_session(project, cfg, counter, ["- summary"])
        session.ledger.add_message("user", "a")
        session.ledger.add_message("assistant", "b")
        assert await session.compress_history() is True
        assert session.ledger.compressed == "- summary"

    @pytest.mark.asyncio
    async def test_summarizer_usage_does_not_trigger_compression(self, project, engine_config, counter):
        cfg = deep_merge(engine_config, {"context_management": {"recent_messages_count": 1}})
        _, session = await open_session(project, cfg, counter, ["hi", "- summary", "ok"], context_length=100)
        first = await session.process_query("q")
        assert first.compressed is False
        assert await session.compress_history() is True
        assert session.gateway.last_prompt_tokens == 100

        second = await session.process_query("q2")
        assert session.gateway.last_prompt_tokens is None
        assert second.compressed is False
        assert second.warnings == []
        assert session.ledger.compressed == "- summary"
