"""Record compactions in the session ledger."""

from dataclasses import dataclass
from typing import Any

from loguru import logger

from condensa.session.store import SessionEntry, SessionStore, merge_entry, now_ms


@dataclass
class LedgerTarget:
    """Where a compaction should be recorded.

    ``session_store`` is the caller's in-memory view of the ledger,
    ``store`` the durable copy behind it.
    """
    session_key: str | None = None
    session_store: dict[str, SessionEntry] | None = None
    session_entry: SessionEntry | None = None
    store: SessionStore | None = None


def compaction_updates(next_count: int, now: int, tokens_after: int | None) -> dict[str, Any]:
    """Build the field-level update recorded for one compaction."""
    updates: dict[str, Any] = {
        "compaction_count": next_count,
        "updated_at": now,
    }
    if tokens_after is None:
        # Never keep a pre-compaction total; the next usage report replaces the zeros.
        updates["total_tokens"] = 0
        updates["input_tokens"] = 0
        updates["output_tokens"] = 0
    elif tokens_after > 0:
        # Only an aggregate estimate exists after compaction.
        updates["total_tokens"] = tokens_after
        updates["input_tokens"] = None
        updates["output_tokens"] = None
    return updates


async def increment_compaction_count(
    *,
    session_entry: SessionEntry | None = None,
    session_store: dict[str, SessionEntry] | None = None,
    session_key: str | None = None,
    store: SessionStore | None = None,
    now: int | None = None,
    tokens_after: int | None = None,
) -> int | None:
    """
    Bump the compaction count for a session and refresh its token totals.

    Args:
        session_entry: Fallback entry when the key is not in ``session_store``.
        session_store: In-memory ledger, updated in place.
        session_key: Key of the session in both ledgers.
        store: Durable ledger; receives the same field-level update.
        now: Timestamp in epoch milliseconds (defaults to the current time).
        tokens_after: Post-compaction estimate, None when unknown.

    Returns:
        The new compaction count, or None when there was nothing to update.
    """
    if session_store is None or not session_key:
        return None

    entry = session_store.get(session_key)
    if entry is None:
        entry = session_entry
    if entry is None:
        return None

    next_count = (entry.compaction_count or 0) + 1
    updates = compaction_updates(next_count, now if now is not None else now_ms(), tokens_after)

    session_store[session_key] = merge_entry(entry, updates)

    if store is not None:
        def apply(persisted: dict[str, SessionEntry]) -> None:
            persisted[session_key] = merge_entry(persisted.get(session_key), updates)

        await store.update(apply)

    logger.debug(
        f"Session {session_key}: compaction #{next_count}, "
        f"total_tokens={updates.get('total_tokens', entry.total_tokens)}"
    )
    return next_count


async def record_compaction(target: LedgerTarget, tokens_after: int | None) -> int | None:
    """Apply ``increment_compaction_count`` to a LedgerTarget."""
    return await increment_compaction_count(
        session_entry=target.session_entry,
        session_store=target.session_store,
        session_key=target.session_key,
        store=target.store,
        tokens_after=tokens_after,
    )
