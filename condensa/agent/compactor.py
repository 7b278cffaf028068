"""Compaction orchestration for conversation history."""

from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from condensa.agent.summarizer import Summarizer
from condensa.agent.tokens import estimate_message_tokens
from condensa.session.ledger import LedgerTarget, record_compaction
from condensa.session.manager import Session


@dataclass
class CompactionSummary:
    """What a compaction produced. ``tokens_after`` is None when unknown."""
    summary: str
    first_kept_entry_id: str | None
    tokens_before: int
    tokens_after: int | None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class CompactionOutcome:
    """Result returned to the caller of ``Compactor.compact``."""
    result: CompactionSummary
    ok: bool = True
    compacted: bool = True
    compaction_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        r = self.result
        return {
            "ok": self.ok,
            "compacted": self.compacted,
            "result": {
                "summary": r.summary,
                "firstKeptEntryId": r.first_kept_entry_id,
                "tokensBefore": r.tokens_before,
                "tokensAfter": r.tokens_after,
                "details": r.details,
            },
        }


class Compactor:
    """
    Runs one compaction of a live session.

    The message list handed to the summarizer is always rebuilt from the
    durable log right before the call, and rebuilt again right after it, so
    messages written while compaction was being decided or was running end
    up either in the summary or in the kept tail.
    """

    THRESHOLDS = {"eco": 0.40, "normal": 0.60, "full": 0.85}

    def __init__(
        self,
        summarizer: Summarizer,
        max_context_tokens: int,
        estimator: Callable[[dict], int] = estimate_message_tokens,
    ):
        if max_context_tokens <= 0:
            raise ValueError("max_context_tokens must be positive")
        self.summarizer = summarizer
        self.max_context_tokens = max_context_tokens
        self.estimator = estimator

    def should_compact(self, messages: list[dict], context_mode: str) -> bool:
        """Check if context exceeds threshold for current mode."""
        if context_mode not in self.THRESHOLDS:
            return False
        total = sum(self.estimator(m) for m in messages)
        return total >= self.THRESHOLDS[context_mode] * self.max_context_tokens

    async def compact(
        self,
        session: Session,
        custom_instructions: str | None = None,
        ledger: LedgerTarget | None = None,
    ) -> CompactionOutcome:
        """
        Compact ``session`` once.

        Summarization and reconciliation errors propagate. Pending writes are
        flushed and the session is disposed on every exit path.

        Args:
            session: Live session to compact; disposed when this returns.
            custom_instructions: Extra guidance passed to the summarizer.
            ledger: Where to record the compaction count and new token total.

        Returns:
            CompactionOutcome with the summary and token accounting.
        """
        try:
            try:
                messages = self._sync_from_log(session)
                snapshot_end = session.last_entry_id
                result = await self.summarizer.summarize(messages, custom_instructions)

                session.log.append_compaction(
                    summary=result.summary,
                    first_kept_entry_id=result.first_kept_entry_id,
                    tokens_before=result.tokens_before,
                    details=result.details,
                    last_summarized_entry_id=snapshot_end,
                )

                # Picks up anything appended while the summarizer was running
                remaining = self._sync_from_log(session)
                tokens_after = self._estimate_tokens_after(remaining, result.tokens_before)

                compaction_count = None
                if ledger is not None:
                    compaction_count = await record_compaction(ledger, tokens_after)

                logger.info(
                    f"Compacted session {session.key}: {len(messages)} -> "
                    f"{len(remaining)} messages, tokens {result.tokens_before} -> "
                    f"{tokens_after if tokens_after is not None else 'unknown'}"
                )
                return CompactionOutcome(
                    result=CompactionSummary(
                        summary=result.summary,
                        first_kept_entry_id=result.first_kept_entry_id,
                        tokens_before=result.tokens_before,
                        tokens_after=tokens_after,
                        details=result.details,
                    ),
                    compaction_count=compaction_count,
                )
            finally:
                session.log.flush_pending()
        finally:
            session.dispose()

    def _sync_from_log(self, session: Session) -> list[dict]:
        """Persist buffered writes, then rebuild the session view from the log."""
        flushed = session.log.flush_pending()
        messages = session.reload()
        logger.debug(
            f"Reconciled session {session.key}: {len(messages)} messages"
            + (f" ({flushed} flushed)" if flushed else "")
        )
        return messages

    def _estimate_tokens_after(self, messages: list[dict], tokens_before: int) -> int | None:
        """Estimate the compacted transcript; None if the estimate can't be trusted."""
        try:
            tokens_after = sum(self.estimator(m) for m in messages)
        except Exception as e:
            logger.warning(f"Token estimation after compaction failed: {e}")
            return None

        if tokens_after > tokens_before:
            logger.warning(
                f"Discarding post-compaction estimate {tokens_after} "
                f"(exceeds {tokens_before} before compaction)"
            )
            return None
        return tokens_after
