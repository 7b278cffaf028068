"""Session management: durable entry logs and the live message view."""

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from condensa.errors import SessionDisposedError

SUMMARY_PREFIX = "[Conversation Summary]\n"


def safe_filename(name: str) -> str:
    """Make a session key usable as a file name."""
    return re.sub(r"[^A-Za-z0-9._-]", "_", name).strip(".") or "session"


def _new_entry_id() -> str:
    return uuid.uuid4().hex[:12]


class SessionEntryLog:
    """
    Append-only JSONL log of session entries.

    The first line is a metadata header; every other line is a ``message`` or
    ``compaction`` entry. Entries appended with ``buffered=True`` (tool
    results) stay in memory until ``flush_pending`` writes them.
    """

    def __init__(self, path: Path, session_key: str):
        self.path = path
        self.session_key = session_key
        self._pending: list[dict[str, Any]] = []

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def append_message(self, message: dict[str, Any], buffered: bool = False) -> str:
        """Append a message entry and return its id."""
        stored = dict(message)
        meta = {k: v for k, v in (stored.get("metadata") or {}).items() if k != "entry_id"}
        if meta:
            stored["metadata"] = meta
        else:
            stored.pop("metadata", None)

        entry = {
            "id": _new_entry_id(),
            "type": "message",
            "timestamp": datetime.now().isoformat(),
            "message": stored,
        }
        if buffered:
            self._pending.append(entry)
        else:
            # Keep disk order equal to append order
            self.flush_pending()
            self._write([entry])
        return entry["id"]

    def append_compaction(
        self,
        summary: str,
        first_kept_entry_id: str | None,
        tokens_before: int,
        details: Any = None,
        last_summarized_entry_id: str | None = None,
    ) -> str:
        """
        Append a compaction entry and return its id.

        ``last_summarized_entry_id`` is the last entry the summarizer saw;
        message entries after it are kept even when ``first_kept_entry_id``
        is missing or unknown.
        """
        self.flush_pending()
        entry = {
            "id": _new_entry_id(),
            "type": "compaction",
            "timestamp": datetime.now().isoformat(),
            "summary": summary,
            "first_kept_entry_id": first_kept_entry_id,
            "tokens_before": tokens_before,
            "details": details,
            "last_summarized_entry_id": last_summarized_entry_id,
        }
        self._write([entry])
        return entry["id"]

    def flush_pending(self) -> int:
        """Persist buffered entries in order. Returns how many were written."""
        if not self._pending:
            return 0
        pending, self._pending = self._pending, []
        self._write(pending)
        logger.debug(f"Flushed {len(pending)} pending entries for {self.session_key}")
        return len(pending)

    def get_entries(self) -> list[dict[str, Any]]:
        """Read all durable entries. Buffered entries are not included."""
        if not self.path.exists():
            return []

        entries = []
        with open(self.path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping unreadable line {lineno} in {self.path.name}: {e}")
                    continue
                if data.get("_type") == "metadata":
                    continue
                entries.append(data)
        return entries

    def _write(self, entries: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists()
        with open(self.path, "a", encoding="utf-8") as f:
            if is_new:
                header = {
                    "_type": "metadata",
                    "session_key": self.session_key,
                    "created_at": datetime.now().isoformat(),
                }
                f.write(json.dumps(header, ensure_ascii=False) + "\n")
            for entry in entries:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")


def _entry_message(entry: dict[str, Any]) -> dict[str, Any]:
    msg = dict(entry["message"])
    msg["metadata"] = {**(msg.get("metadata") or {}), "entry_id": entry["id"]}
    return msg


def _summary_message(entry: dict[str, Any]) -> dict[str, Any]:
    return {
        "role": "user",
        "content": SUMMARY_PREFIX + (entry.get("summary") or ""),
        "metadata": {
            "type": "compaction",
            "entry_id": entry["id"],
            "timestamp": entry.get("timestamp"),
        },
    }


def build_session_context(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Rebuild the LLM-visible message list from durable entries.

    With a compaction on record, the view is the latest summary, then the
    messages it kept (from ``first_kept_entry_id`` on, plus any written after
    the summarizer's snapshot ended), then everything appended after it.
    """
    last_compaction = None
    for i in range(len(entries) - 1, -1, -1):
        if entries[i].get("type") == "compaction":
            last_compaction = i
            break

    if last_compaction is None:
        return [_entry_message(e) for e in entries if e.get("type") == "message"]

    compaction = entries[last_compaction]
    messages = [_summary_message(compaction)]

    first_kept = compaction.get("first_kept_entry_id")
    snapshot_end = compaction.get("last_summarized_entry_id")
    keeping = False
    unsummarized = False
    for entry in entries[:last_compaction]:
        if first_kept and entry.get("id") == first_kept:
            keeping = True
        if (keeping or unsummarized) and entry.get("type") == "message":
            messages.append(_entry_message(entry))
        if snapshot_end and entry.get("id") == snapshot_end:
            unsummarized = True

    for entry in entries[last_compaction + 1:]:
        if entry.get("type") == "message":
            messages.append(_entry_message(entry))

    return messages


@dataclass
class Session:
    """
    A live conversation session.

    ``messages`` is the in-memory view; ``log`` is the durable source it is
    rebuilt from. ``last_entry_id`` is the newest entry seen by the last reload.
    """

    key: str
    log: SessionEntryLog
    messages: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    last_entry_id: str | None = None
    disposed: bool = False
    on_dispose: Callable[["Session"], None] | None = field(default=None, repr=False)

    def add_message(
        self,
        role: str,
        content: str | None,
        msg_metadata: dict | None = None,
        buffered: bool = False,
        **kwargs: Any,
    ) -> str:
        """Add a message to the session and its log. Returns the entry id."""
        self._check_open()
        meta: dict[str, Any] = {"timestamp": datetime.now().isoformat()}
        if msg_metadata:
            meta.update(msg_metadata)
        msg = {"role": role, "content": content or "", "metadata": meta, **kwargs}
        entry_id = self.log.append_message(msg, buffered=buffered)
        msg["metadata"]["entry_id"] = entry_id
        self.messages.append(msg)
        return entry_id

    def reload(self) -> list[dict[str, Any]]:
        """Replace the in-memory view with one rebuilt from the durable log."""
        self._check_open()
        entries = self.log.get_entries()
        self.last_entry_id = entries[-1].get("id") if entries else None
        self.messages = build_session_context(entries)
        return self.messages

    def dispose(self) -> None:
        """Release the session. Further use raises SessionDisposedError."""
        if self.disposed:
            return
        self.disposed = True
        if self.on_dispose:
            self.on_dispose(self)

    def _check_open(self) -> None:
        if self.disposed:
            raise SessionDisposedError(f"Session {self.key} has been disposed")


class SessionManager:
    """
    Opens sessions backed by JSONL logs under ``sessions_dir``.

    Open sessions are cached until disposed; reopening after dispose reloads
    from disk.
    """

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir).expanduser()
        self._cache: dict[str, Session] = {}

    def open(self, session_key: str) -> Session:
        """Get the open session for a key, loading it from disk if needed."""
        if session_key in self._cache:
            return self._cache[session_key]

        log = SessionEntryLog(self._get_log_path(session_key), session_key)
        session = Session(key=session_key, log=log, on_dispose=self._forget)
        session.reload()
        self._cache[session_key] = session
        logger.debug(f"Opened session {session_key} ({len(session.messages)} messages)")
        return session

    def is_open(self, session_key: str) -> bool:
        return session_key in self._cache

    def list_sessions(self) -> list[str]:
        """List session keys that have a log on disk."""
        keys = []
        for path in sorted(self.sessions_dir.glob("*.jsonl")):
            try:
                with open(path, encoding="utf-8") as f:
                    header = json.loads(f.readline() or "{}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read session header {path.name}: {e}")
                continue
            keys.append(header.get("session_key") or path.stem)
        return keys

    def _forget(self, session: Session) -> None:
        if self._cache.get(session.key) is session:
            del self._cache[session.key]

    def _get_log_path(self, session_key: str) -> Path:
        return self.sessions_dir / f"{safe_filename(session_key)}.jsonl"
