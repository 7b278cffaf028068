"""LLM provider abstraction module."""

from condensa.providers.base import LLMProvider, LLMResponse

__all__ = ["LLMProvider", "LLMResponse"]
