"""Tests for the LLM summarizer."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from condensa.agent.summarizer import LLMSummarizer, is_summary_message
from condensa.agent.tokens import estimate_messages_tokens
from condensa.errors import SummarizationError
from condensa.providers.base import LLMResponse
from condensa.session.manager import SUMMARY_PREFIX


def _msg(role, content, i, **kwargs):
    return {"role": role, "content": content, "metadata": {"entry_id": f"e{i}"}, **kwargs}


def _conversation(n):
    return [_msg("user" if i % 2 == 0 else "assistant", f"msg {i}", i) for i in range(n)]


def _make_summarizer(provider=None, max_tokens=200_000, **kwargs):
    return LLMSummarizer(provider or MagicMock(), "anthropic/claude-opus-4-5", max_tokens, **kwargs)


# ── _determine_tail ─────────────────────────────────────────────


class TestDetermineTail:
    def test_respects_tail_min(self):
        s = _make_summarizer()
        assert s._determine_tail(_conversation(30)) >= 10

    def test_grows_to_tail_max(self):
        s = _make_summarizer()
        assert s._determine_tail(_conversation(50)) == 20

    def test_respects_token_limit(self):
        # 5% of 1000 = 50 tokens, each message ~104 tokens
        s = _make_summarizer(max_tokens=1000)
        msgs = [_msg("user", "a" * 400, i) for i in range(30)]
        assert s._determine_tail(msgs) == 10

    def test_parity_extends_for_orphaned_tool_response(self):
        s = _make_summarizer(tail_min=2, tail_max=2)
        msgs = _conversation(6) + [
            _msg("assistant", "", 6, tool_calls=[{
                "id": "1", "type": "function", "function": {"name": "t", "arguments": "{}"},
            }]),
            _msg("tool", "result", 7, tool_call_id="1", name="t"),
            _msg("user", "after", 8),
        ]
        tail = s._determine_tail(msgs)
        assert msgs[-tail]["role"] == "assistant"
        assert tail == 3

    def test_fewer_messages_than_tail_min(self):
        s = _make_summarizer()
        assert s._determine_tail(_conversation(5)) == 5

    @pytest.mark.parametrize("tail_min", [0, -1])
    def test_tail_min_below_one_rejected(self, tail_min):
        with pytest.raises(ValueError, match="tail_min"):
            _make_summarizer(tail_min=tail_min)


# ── _format_compaction_input ────────────────────────────────────


class TestFormatCompactionInput:
    def test_basic_format(self):
        result = _make_summarizer()._format_compaction_input([
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi there"},
        ], None)
        assert "=== CONVERSATION ===" in result
        assert "[user] hello" in result
        assert "[assistant] hi there" in result
        assert "=== PREVIOUS SUMMARY ===" not in result

    def test_with_previous_summary(self):
        prev = {"role": "user", "content": "previous summary content"}
        result = _make_summarizer()._format_compaction_input(
            [{"role": "user", "content": "new msg"}], prev,
        )
        assert result.index("=== PREVIOUS SUMMARY ===") < result.index("=== CONVERSATION ===")
        assert "previous summary content" in result

    def test_tool_calls_formatted(self):
        result = _make_summarizer()._format_compaction_input([
            {
                "role": "assistant",
                "content": "Let me check",
                "tool_calls": [{
                    "id": "1",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": {"path": "/tmp/test"}},
                }],
            },
            {"role": "tool", "content": "file content", "name": "read_file"},
        ], None)
        assert '[tool_call] read_file({"path": "/tmp/test"})' in result
        assert "[tool_response:read_file] file content" in result
        assert "[assistant] Let me check" in result


# ── summarize ───────────────────────────────────────────────────


class TestSummarize:
    @pytest.mark.asyncio
    async def test_returns_cut_point_and_tokens_before(self):
        provider = AsyncMock()
        provider.chat = AsyncMock(return_value=LLMResponse(content=" ### Context\nSummary. "))
        s = _make_summarizer(provider, tail_min=4, tail_max=4)
        messages = _conversation(12)

        result = await s.summarize(messages)

        assert result.summary == "### Context\nSummary."
        assert result.first_kept_entry_id == "e8"
        assert result.tokens_before == estimate_messages_tokens(messages)
        assert result.details["compacted_messages"] == 8
        assert result.details["kept_messages"] == 4

        prompt = provider.chat.call_args.kwargs["messages"]
        assert prompt[0]["role"] == "system"
        assert "[user] msg 0" in prompt[1]["content"]
        assert "msg 8" not in prompt[1]["content"]

    @pytest.mark.asyncio
    async def test_custom_instructions_in_system_prompt(self):
        provider = AsyncMock()
        provider.chat = AsyncMock(return_value=LLMResponse(content="ok"))
        s = _make_summarizer(provider, tail_min=2, tail_max=2)

        await s.summarize(_conversation(6), custom_instructions="Keep all file paths")

        system = provider.chat.call_args.kwargs["messages"][0]["content"]
        assert system.endswith("Keep all file paths")

    @pytest.mark.asyncio
    async def test_previous_summary_is_merged_not_kept(self):
        provider = AsyncMock()
        provider.chat = AsyncMock(return_value=LLMResponse(content="merged"))
        s = _make_summarizer(provider, tail_min=2, tail_max=2)
        summary = {
            "role": "user",
            "content": SUMMARY_PREFIX + "old summary",
            "metadata": {"type": "compaction", "entry_id": "c1"},
        }
        messages = [summary] + _conversation(4)

        result = await s.summarize(messages)

        assert result.first_kept_entry_id != "c1"
        text = provider.chat.call_args.kwargs["messages"][1]["content"]
        assert "=== PREVIOUS SUMMARY ===" in text
        assert "old summary" in text

    @pytest.mark.asyncio
    async def test_only_previous_summary_before_tail_raises(self):
        s = _make_summarizer(AsyncMock(), tail_min=2, tail_max=20)
        summary = {"role": "user", "content": "s", "metadata": {"type": "compaction"}}
        with pytest.raises(SummarizationError):
            await s.summarize([summary] + _conversation(1))

    @pytest.mark.asyncio
    async def test_too_few_messages_raises(self):
        provider = AsyncMock()
        s = _make_summarizer(provider)
        with pytest.raises(SummarizationError):
            await s.summarize(_conversation(3))
        provider.chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_error_raises(self):
        provider = AsyncMock()
        provider.chat = AsyncMock(return_value=LLMResponse(
            content="Error calling LLM: timeout", finish_reason="error",
        ))
        s = _make_summarizer(provider, tail_min=2, tail_max=2)
        with pytest.raises(SummarizationError, match="timeout"):
            await s.summarize(_conversation(6))

    @pytest.mark.asyncio
    async def test_empty_summary_raises(self):
        provider = AsyncMock()
        provider.chat = AsyncMock(return_value=LLMResponse(content="   "))
        s = _make_summarizer(provider, tail_min=2, tail_max=2)
        with pytest.raises(SummarizationError):
            await s.summarize(_conversation(6))

    @pytest.mark.asyncio
    async def test_provider_exception_propagates(self):
        provider = AsyncMock()
        provider.chat = AsyncMock(side_effect=ConnectionError("offline"))
        s = _make_summarizer(provider, tail_min=2, tail_max=2)
        with pytest.raises(ConnectionError):
            await s.summarize(_conversation(6))


def test_is_summary_message():
    assert is_summary_message({"role": "user", "content": "", "metadata": {"type": "compaction"}})
    assert not is_summary_message({"role": "user", "content": ""})
