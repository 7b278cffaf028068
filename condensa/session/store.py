"""Durable session ledger: one JSON document of per-session accounting entries."""

import asyncio
import json
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from condensa.errors import SessionStoreError


class SessionEntry(BaseModel):
    """Cached accounting for one session.

    A field set to None is "undefined" and is left out of the persisted JSON.
    Unknown fields written by other components are kept as-is.
    """

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    compaction_count: int = 0
    total_tokens: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    updated_at: int | None = None  # epoch milliseconds
    memory_flush_compaction_count: int | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def merge_entry(existing: SessionEntry | None, updates: dict[str, Any]) -> SessionEntry:
    """Field-level merge of ``updates`` onto ``existing``.

    Fields not named in ``updates`` keep their value; a None value clears the field.
    """
    if existing is None:
        return SessionEntry(**updates)
    return existing.model_copy(update=updates)


StoreMutator = Callable[[dict[str, SessionEntry]], None]


class SessionStore:
    """
    JSON file mapping session keys to SessionEntry records.

    ``update`` is the only write path: it re-reads the file, applies a mutator
    and atomically replaces the file, so fields touched by other writers since
    the caller last looked are preserved.
    """

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def load(self) -> dict[str, SessionEntry]:
        """Read every entry from disk. A missing file is an empty store."""
        if not self.path.exists():
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            raise SessionStoreError(f"Corrupt session store {self.path}: {e}") from e

        if not isinstance(raw, dict):
            raise SessionStoreError(f"Session store {self.path} is not a JSON object")

        store: dict[str, SessionEntry] = {}
        for key, data in raw.items():
            if not isinstance(data, dict):
                logger.warning(f"Skipping malformed session entry {key!r} in {self.path}")
                continue
            try:
                store[key] = SessionEntry.model_validate(data)
            except ValidationError as e:
                raise SessionStoreError(f"Invalid session entry {key!r} in {self.path}: {e}") from e
        return store

    def get(self, session_key: str) -> SessionEntry | None:
        """Read a single entry."""
        return self.load().get(session_key)

    async def update(self, mutator: StoreMutator) -> dict[str, SessionEntry]:
        """Atomically read, mutate and write back the whole store."""
        async with self._lock:
            store = self.load()
            mutator(store)
            self._write(store)
            return store

    def _write(self, store: dict[str, SessionEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {key: entry.to_json() for key, entry in store.items()}

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise SessionStoreError(f"Failed to write session store {self.path}: {e}") from e
