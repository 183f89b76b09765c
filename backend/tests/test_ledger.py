"""Tests for the conversation ledger."""
import json

import pytest

from conftest import FakeSummarizer
from coderelay.context_engine.conversation_ledger import ConversationLedger


def fill(ledger, count):
    for i in range(count):
        role = "user" if i % 2 == 0 else "assistant"
        ledger.add_message(role, f"message {i}")


class TestAppend:
    def test_add_and_recent(self, counter):
        ledger = ConversationLedger(counter, keep_recent=2)
        fill(ledger, 3)
        assert [m.content for m in ledger.get_recent_messages()] == ["message 1", "message 2"]
        assert [m.content for m in ledger.get_recent_messages(1)] == ["message 2"]
        assert ledger.get_recent_messages(0) == []

    def test_invalid_role(self, counter):
        ledger = ConversationLedger(counter)
        with pytest.raises(ValueError):
            ledger.add_message("tool", "nope")

    def test_remove_last_and_clear(self, counter):
        ledger = ConversationLedger(counter)
        fill(ledger, 2)
        ledger.compressed = "old"
        assert ledger.remove_last_message().content == "message 1"
        ledger.clear()
        assert ledger.full == []
        assert ledger.compressed == ""
        assert ledger.remove_last_message() is None


class TestShouldCompress:
    def test_small_window_never_compresses(self, counter):
        ledger = ConversationLedger(counter, keep_recent=5)
        fill(ledger, 5)
        assert ledger.should_compress(current_tokens=10_000, max_tokens=100) is False

    def test_threshold(self, counter):
        ledger = ConversationLedger(counter, keep_recent=2, threshold=0.7)
        fill(ledger, 3)
        assert ledger.should_compress(current_tokens=71, max_tokens=100) is True
        assert ledger.should_compress(current_tokens=70, max_tokens=100) is False
        assert ledger.should_compress(current_tokens=60, max_tokens=100, threshold=0.5) is True

    def test_prefers_usage_reading(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1, usage_reader=lambda: 900)
        fill(ledger, 2)
        assert ledger.should_compress(context_window=1000) is True

    def test_falls_back_to_recount(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1, usage_reader=lambda: None)
        fill(ledger, 2)
        assert ledger.should_compress(context_window=100_000) is False
        assert ledger.should_compress(context_window=10) is True

    def test_no_ceiling(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1)
        fill(ledger, 4)
        assert ledger.should_compress(current_tokens=500) is False


class TestCompressHistory:
    @pytest.mark.asyncio
    async def test_keeps_newest_messages(self, counter):
        summarizer = FakeSummarizer("- decided to use sqlite")
        ledger = ConversationLedger(counter, summarizer=summarizer, keep_recent=2)
        fill(ledger, 5)

        assert await ledger.compress_history() is True
        assert [m.content for m in ledger.full] == ["message 3", "message 4"]
        assert ledger.compressed == "- decided to use sqlite"
        assert "USER: message 0" in summarizer.calls[0]
        assert "message 3" not in summarizer.calls[0]

    @pytest.mark.asyncio
    async def test_summaries_accumulate(self, counter):
        ledger = ConversationLedger(counter, summarizer=FakeSummarizer("- second"), keep_recent=1)
        ledger.compressed = "- first"
        fill(ledger, 3)
        assert await ledger.compress_history() is True
        assert ledger.compressed == "- first\n\n- second"

    @pytest.mark.asyncio
    async def test_failure_leaves_ledger_unchanged(self, counter):
        ledger = ConversationLedger(
            counter, summarizer=FakeSummarizer(error=RuntimeError("model down")), keep_recent=1
        )
        fill(ledger, 4)
        assert await ledger.compress_history() is False
        assert len(ledger.full) == 4
        assert ledger.compressed == ""

    @pytest.mark.asyncio
    async def test_empty_summary_is_failure(self, counter):
        ledger = ConversationLedger(counter, summarizer=FakeSummarizer("   "), keep_recent=1)
        fill(ledger, 4)
        assert await ledger.compress_history() is False
        assert len(ledger.full) == 4

    @pytest.mark.asyncio
    async def test_nothing_to_compress(self, counter):
        summarizer = FakeSummarizer()
        ledger = ConversationLedger(counter, summarizer=summarizer, keep_recent=3)
        fill(ledger, 3)
        assert await ledger.compress_history() is False
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_no_summarizer(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1)
        fill(ledger, 3)
        assert await ledger.compress_history() is False


class TestPromptViews:
    def test_budget_fits(self, counter):
        ledger = ConversationLedger(counter, keep_recent=2)
        ledger.compressed = "- summary line"
        fill(ledger, 4)
        view = ledger.get_messages_for_prompt(10_000)
        assert view["compressed"] == "- summary line"
        assert view["recent"] == [
            {"role": "user", "content": "message 2"},
            {"role": "assistant", "content": "message 3"},
        ]
        assert view["total_tokens"] == counter.count_messages(view["recent"]) + counter.count_tokens("- summary line")

    def test_summary_truncated_to_remaining_budget(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1)
        ledger.compressed = "x" * 5000
        fill(ledger, 1)
        recent_tokens = counter.count_messages([{"role": "user", "content": "message 0"}])
        view = ledger.get_messages_for_prompt(recent_tokens + 100)
        assert 0 < counter.count_tokens(view["compressed"]) <= 100
        assert view["total_tokens"] <= recent_tokens + 100

    def test_summary_dropped_when_no_room(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1)
        ledger.compressed = "- summary"
        fill(ledger, 1)
        view = ledger.get_messages_for_prompt(1)
        assert view["compressed"] == ""
        assert len(view["recent"]) == 1

    def test_context_window_view(self, counter):
        ledger = ConversationLedger(counter, keep_recent=2)
        fill(ledger, 2)
        window = ledger.build_context_window(max_tokens=5)
        assert window["fits_in_window"] is False
        assert window["tokens"]["total"] == window["tokens"]["recent"]

    def test_stats(self, counter):
        ledger = ConversationLedger(counter)
        assert ledger.get_stats().compression_ratio == 0.0
        ledger.compressed = "- s"
        fill(ledger, 2)
        stats = ledger.get_stats()
        assert stats.message_count == 2
        assert stats.has_compression is True
        assert stats.compression_ratio > 0

    def test_history_text(self, counter):
        ledger = ConversationLedger(counter)
        ledger.compressed = "- earlier"
        fill(ledger, 1)
        text = ledger.get_full_history_text()
        assert text.startswith("=== COMPRESSED HISTORY ===\n- earlier")
        assert "USER: message 0" in text


class TestPersistence:
    def test_document_round_trip(self, counter):
        ledger = ConversationLedger(counter, keep_recent=1)
        ledger.compressed = "- summary"
        fill(ledger, 3)
        document = ledger.to_document()
        assert len(document.history.active_window) == 1

        restored = ConversationLedger(counter)
        restored.load_document(document)
        assert [m.content for m in restored.full] == ["message 0", "message 1", "message 2"]
        assert restored.full[0].timestamp == ledger.full[0].timestamp
        assert restored.compressed == "- summary"

    def test_export_uses_camel_case(self, counter):
        ledger = ConversationLedger(counter)
        fill(ledger, 1)
        data = json.loads(ledger.export_history())
        assert "activeWindow" in data["history"]
        assert "lastSaved" in data
        assert data["stats"]["messageCount"] == 1
