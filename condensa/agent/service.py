"""Wires sessions, the ledger and the compactor together from configuration."""

from loguru import logger

from condensa.agent.compactor import CompactionOutcome, Compactor
from condensa.agent.memory_flush import record_memory_flush, should_run_memory_flush
from condensa.agent.summarizer import LLMSummarizer, Summarizer
from condensa.config.schema import Config
from condensa.providers.base import LLMProvider
from condensa.session.ledger import LedgerTarget
from condensa.session.manager import SessionManager
from condensa.session.store import SessionEntry, SessionStore, merge_entry, now_ms


class CompactionService:
    """Entry point for an agent loop: usage accounting, memory flush checks and compaction."""

    def __init__(
        self,
        config: Config,
        provider: LLMProvider | None = None,
        summarizer: Summarizer | None = None,
        sessions: SessionManager | None = None,
        store: SessionStore | None = None,
    ):
        if summarizer is None:
            if provider is None:
                raise ValueError("Either provider or summarizer is required")
            c = config.compaction
            summarizer = LLMSummarizer(
                provider,
                model=c.model,
                max_context_tokens=c.max_context_tokens,
                tail_min=c.tail_min,
                tail_max=c.tail_max,
                tail_token_ratio=c.tail_token_ratio,
                temperature=c.temperature,
            )

        self.config = config
        self.sessions = sessions or SessionManager(config.sessions_path)
        self.store = store or SessionStore(config.store_path)
        self.compactor = Compactor(summarizer, config.compaction.max_context_tokens)
        self.ledger: dict[str, SessionEntry] = self.store.load()

    async def record_usage(
        self, session_key: str, input_tokens: int, output_tokens: int
    ) -> SessionEntry:
        """Store token usage reported by the provider for the latest turn."""
        updates = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "updated_at": now_ms(),
        }
        self.ledger[session_key] = merge_entry(self.ledger.get(session_key), updates)

        def apply(persisted: dict[str, SessionEntry]) -> None:
            persisted[session_key] = merge_entry(persisted.get(session_key), updates)

        await self.store.update(apply)
        return self.ledger[session_key]

    def needs_memory_flush(self, session_key: str) -> bool:
        mf = self.config.memory_flush
        if not mf.enabled:
            return False
        return should_run_memory_flush(
            self.ledger.get(session_key),
            self.config.compaction.max_context_tokens,
            reserve_floor=mf.reserve_floor_tokens,
            soft_threshold=mf.soft_threshold_tokens,
        )

    async def mark_memory_flushed(self, session_key: str) -> None:
        entry = await record_memory_flush(self.store, session_key)
        if entry is not None:
            self.ledger[session_key] = entry

    async def compact(
        self, session_key: str, custom_instructions: str | None = None
    ) -> CompactionOutcome:
        """Compact a session now. The session is released afterwards."""
        session = self.sessions.open(session_key)
        return await self.compactor.compact(
            session,
            custom_instructions=custom_instructions,
            ledger=LedgerTarget(
                session_key=session_key,
                session_store=self.ledger,
                session_entry=SessionEntry(),
                store=self.store,
            ),
        )

    async def maybe_compact(self, session_key: str) -> CompactionOutcome | None:
        """Compact if the session is over the threshold for the configured mode."""
        mode = self.config.compaction.context_mode
        session = self.sessions.open(session_key)
        if not self.compactor.should_compact(session.messages, mode):
            return None
        logger.info(f"Compaction triggered ({mode}) for {session_key}")
        return await self.compact(session_key)
