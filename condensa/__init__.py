"""condensa - lossless conversation history compaction."""

__version__ = "0.1.0"
