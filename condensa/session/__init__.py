"""Session logs and the session ledger."""

from condensa.session.ledger import LedgerTarget, increment_compaction_count
from condensa.session.manager import Session, SessionEntryLog, SessionManager, build_session_context
from condensa.session.store import SessionEntry, SessionStore

__all__ = [
    "LedgerTarget",
    "Session",
    "SessionEntry",
    "SessionEntryLog",
    "SessionManager",
    "SessionStore",
    "build_session_context",
    "increment_compaction_count",
]
