"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompactionConfig(BaseModel):
    """When and how conversation history is compacted."""
    context_mode: Literal["eco", "normal", "full"] = "normal"
    max_context_tokens: int = Field(default=200_000, gt=0)
    model: str = "anthropic/claude-opus-4-5"
    temperature: float = 0.3
    tail_min: int = Field(default=10, ge=1)  # Messages always kept verbatim
    tail_max: int = Field(default=20, ge=1)
    tail_token_ratio: float = Field(default=0.05, gt=0, le=1)  # Share of max_context_tokens


class SessionsConfig(BaseModel):
    """Where session logs and the session ledger live."""
    directory: str = "~/.condensa/sessions"
    store_file: str = "sessions.json"


class MemoryFlushConfig(BaseModel):
    """Pre-compaction memory flush thresholds."""
    enabled: bool = True
    reserve_floor_tokens: int = 20_000
    soft_threshold_tokens: int = 4_000


class Config(BaseSettings):
    """Root configuration for condensa."""
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    memory_flush: MemoryFlushConfig = Field(default_factory=MemoryFlushConfig)

    model_config = SettingsConfigDict(
        env_prefix="CONDENSA_",
        env_nested_delimiter="__",
    )

    @property
    def sessions_path(self) -> Path:
        """Get expanded sessions directory."""
        return Path(self.sessions.directory).expanduser()

    @property
    def store_path(self) -> Path:
        """Get the session ledger file path."""
        return self.sessions_path / self.sessions.store_file
