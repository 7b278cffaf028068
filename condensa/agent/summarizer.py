"""Summarization of a conversation prefix into a single summary message."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from condensa.agent.tokens import estimate_message_tokens, estimate_messages_tokens
from condensa.errors import SummarizationError
from condensa.prompts.compaction import COMPACTION_SYSTEM_PROMPT, CUSTOM_INSTRUCTIONS_TEMPLATE
from condensa.providers.base import LLMProvider


@dataclass
class CompactionResult:
    """Outcome of one summarization call."""
    summary: str
    first_kept_entry_id: str | None
    tokens_before: int
    details: dict[str, Any] = field(default_factory=dict)


class Summarizer(ABC):
    """Turns a message list into a summary plus a cut point."""

    @abstractmethod
    async def summarize(
        self,
        messages: list[dict[str, Any]],
        custom_instructions: str | None = None,
    ) -> CompactionResult:
        """Summarize ``messages``; everything before the cut point is replaced."""


def is_summary_message(message: dict[str, Any]) -> bool:
    return (message.get("metadata") or {}).get("type") == "compaction"


class LLMSummarizer(Summarizer):
    """Summarizes the older part of a conversation with an LLM, keeping a verbatim tail."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        max_context_tokens: int,
        tail_min: int = 10,
        tail_max: int = 20,
        tail_token_ratio: float = 0.05,
        temperature: float = 0.3,
    ):
        if tail_min < 1:
            raise ValueError("tail_min must be at least 1")
        self.provider = provider
        self.model = model
        self.max_context_tokens = max_context_tokens
        self.tail_min = tail_min
        self.tail_max = max(tail_max, tail_min)
        self.tail_token_ratio = tail_token_ratio
        self.temperature = temperature

    async def summarize(
        self,
        messages: list[dict[str, Any]],
        custom_instructions: str | None = None,
    ) -> CompactionResult:
        if len(messages) < self.tail_min:
            raise SummarizationError(
                f"Nothing to compact: {len(messages)} messages, need at least {self.tail_min}"
            )

        prev_summary = messages[0] if messages and is_summary_message(messages[0]) else None
        compact_start = 1 if prev_summary else 0

        tail_count = self._determine_tail(messages[compact_start:])
        compact_end = len(messages) - tail_count
        if compact_end <= compact_start:
            raise SummarizationError("Nothing to compact between boundaries")

        to_compact = messages[compact_start:compact_end]
        first_kept = (messages[compact_end].get("metadata") or {}).get("entry_id")

        system_prompt = COMPACTION_SYSTEM_PROMPT
        if custom_instructions:
            system_prompt += CUSTOM_INSTRUCTIONS_TEMPLATE.format(instructions=custom_instructions)

        response = await self.provider.chat(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": self._format_compaction_input(to_compact, prev_summary)},
            ],
            model=self.model,
            temperature=self.temperature,
        )
        if response.is_error:
            raise SummarizationError(response.content or "LLM error")

        summary = (response.content or "").strip()
        if not summary:
            raise SummarizationError("Empty summary from LLM")

        logger.debug(
            f"Summarized {len(to_compact)} messages, keeping {tail_count} "
            f"({len(summary)} chars)"
        )
        return CompactionResult(
            summary=summary,
            first_kept_entry_id=first_kept,
            tokens_before=estimate_messages_tokens(messages),
            details={
                "compacted_messages": len(to_compact),
                "kept_messages": tail_count,
                "model": self.model,
                "usage": response.usage,
            },
        )

    def _determine_tail(self, messages: list[dict[str, Any]]) -> int:
        """Return the number of tail messages to preserve.

        The tail grows from tail_min towards tail_max while it fits the token
        budget. If it would start on a tool response, it is extended back to
        the assistant message that issued the call.
        """
        max_tail_tokens = int(self.max_context_tokens * self.tail_token_ratio)
        tail_count = min(self.tail_min, len(messages))
        tail_tokens = sum(estimate_message_tokens(m) for m in messages[-tail_count:])

        while tail_count < self.tail_max and tail_count < len(messages):
            next_tokens = estimate_message_tokens(messages[-(tail_count + 1)])
            if tail_tokens + next_tokens > max_tail_tokens:
                break
            tail_count += 1
            tail_tokens += next_tokens

        # Parity check: don't start tail on a tool response
        if tail_count < len(messages) and messages[-tail_count]["role"] == "tool":
            while tail_count < len(messages):
                tail_count += 1
                if messages[-tail_count]["role"] == "assistant":
                    break

        return tail_count

    def _format_compaction_input(
        self, messages: list[dict[str, Any]], prev_summary: dict[str, Any] | None
    ) -> str:
        """Format messages as text for the summarization prompt."""
        parts = []

        if prev_summary:
            parts.append(
                "=== PREVIOUS SUMMARY ===\n"
                + (prev_summary.get("content", "") or "")
                + "\n"
            )

        parts.append("=== CONVERSATION ===\n")
        for msg in messages:
            role = msg.get("role", "")
            content = msg.get("content", "") or ""
            if not isinstance(content, str):
                content = json.dumps(content, ensure_ascii=False)

            if role == "user":
                parts.append(f"[user] {content}\n")
            elif role == "assistant":
                for tc in msg.get("tool_calls") or []:
                    fn = tc.get("function", {})
                    args = fn.get("arguments", "")
                    if isinstance(args, dict):
                        args = json.dumps(args)
                    parts.append(f"[tool_call] {fn.get('name', '')}({args})\n")
                if content:
                    parts.append(f"[assistant] {content}\n")
            elif role == "tool":
                parts.append(f"[tool_response:{msg.get('name', '')}] {content}\n")

        return "".join(parts)
