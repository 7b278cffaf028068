"""Tests for the pre-compaction memory flush heuristic."""

import json

import pytest

from condensa.agent.memory_flush import record_memory_flush, should_run_memory_flush
from condensa.session.ledger import increment_compaction_count
from condensa.session.store import SessionEntry, SessionStore

WINDOW = 200_000  # threshold = 200k - 20k - 4k = 176k


class TestShouldRunMemoryFlush:
    def test_below_threshold(self):
        assert not should_run_memory_flush(SessionEntry(total_tokens=100_000), WINDOW)

    def test_above_threshold(self):
        assert should_run_memory_flush(SessionEntry(total_tokens=180_000), WINDOW)

    def test_missing_entry_or_total(self):
        assert not should_run_memory_flush(None, WINDOW)
        assert not should_run_memory_flush(SessionEntry(), WINDOW)
        assert not should_run_memory_flush(SessionEntry(total_tokens=0), WINDOW)

    def test_once_per_compaction_cycle(self):
        entry = SessionEntry(total_tokens=180_000, compaction_count=2,
                             memory_flush_compaction_count=2)
        assert not should_run_memory_flush(entry, WINDOW)
        entry = SessionEntry(total_tokens=180_000, compaction_count=3,
                             memory_flush_compaction_count=2)
        assert should_run_memory_flush(entry, WINDOW)

    def test_tiny_window_never_fires(self):
        assert not should_run_memory_flush(SessionEntry(total_tokens=10_000), 10_000)

    @pytest.mark.asyncio
    async def test_no_flush_after_unknown_estimate(self):
        """A compaction with an unknown estimate must not leave a stale total behind."""
        store = {"s1": SessionEntry(compaction_count=1, total_tokens=190_000,
                                    memory_flush_compaction_count=1)}
        await increment_compaction_count(session_store=store, session_key="s1", tokens_after=None)
        assert not should_run_memory_flush(store["s1"], WINDOW)


class TestRecordMemoryFlush:
    @pytest.mark.asyncio
    async def test_records_current_cycle(self, tmp_path):
        store = SessionStore(tmp_path / "sessions.json")
        await store.update(lambda s: s.update({
            "s1": SessionEntry(compaction_count=4, total_tokens=180_000),
        }))

        entry = await record_memory_flush(store, "s1", now=123)

        assert entry.memory_flush_compaction_count == 4
        data = json.loads(store.path.read_text())["s1"]
        assert data["memoryFlushCompactionCount"] == 4
        assert data["updatedAt"] == 123
        assert not should_run_memory_flush(store.get("s1"), WINDOW)

    @pytest.mark.asyncio
    async def test_unknown_session(self, tmp_path):
        store = SessionStore(tmp_path / "sessions.json")
        assert await record_memory_flush(store, "nope") is None
