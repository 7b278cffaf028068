"""Pre-compaction memory flush: decide when the agent should persist memories."""

from loguru import logger

from condensa.session.store import SessionEntry, SessionStore, merge_entry, now_ms

DEFAULT_SOFT_THRESHOLD_TOKENS = 4000
DEFAULT_RESERVE_FLOOR_TOKENS = 20000


def should_run_memory_flush(
    entry: SessionEntry | None,
    context_window_tokens: int,
    reserve_floor: int = DEFAULT_RESERVE_FLOOR_TOKENS,
    soft_threshold: int = DEFAULT_SOFT_THRESHOLD_TOKENS,
) -> bool:
    """Check if a memory flush should fire before the next compaction.

    Triggers when total_tokens >= context_window - reserve_floor - soft_threshold,
    at most once per compaction cycle. Unknown or zero totals never trigger.
    """
    if entry is None or not entry.total_tokens or entry.total_tokens <= 0:
        return False

    threshold = max(0, context_window_tokens - reserve_floor - soft_threshold)
    if threshold <= 0 or entry.total_tokens < threshold:
        return False

    # One flush per compaction cycle
    if entry.memory_flush_compaction_count == entry.compaction_count:
        return False
    return True


async def record_memory_flush(
    store: SessionStore, session_key: str, now: int | None = None
) -> SessionEntry | None:
    """Mark that a memory flush ran in the session's current compaction cycle."""
    timestamp = now if now is not None else now_ms()
    recorded: SessionEntry | None = None

    def apply(persisted: dict[str, SessionEntry]) -> None:
        nonlocal recorded
        entry = persisted.get(session_key)
        if entry is None:
            return
        recorded = merge_entry(entry, {
            "memory_flush_compaction_count": entry.compaction_count,
            "updated_at": timestamp,
        })
        persisted[session_key] = recorded

    await store.update(apply)
    if recorded is None:
        logger.debug(f"No ledger entry for {session_key}; memory flush not recorded")
    return recorded
