"""Compaction engine."""

from condensa.agent.compactor import CompactionOutcome, CompactionSummary, Compactor
from condensa.agent.summarizer import CompactionResult, LLMSummarizer, Summarizer

__all__ = [
    "CompactionOutcome",
    "CompactionResult",
    "CompactionSummary",
    "Compactor",
    "LLMSummarizer",
    "Summarizer",
]
