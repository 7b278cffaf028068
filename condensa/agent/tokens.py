"""Approximate token estimation for context management."""

import json
from collections.abc import Mapping

CHARS_PER_TOKEN = 4  # Cross-model estimate (EN text/code/JSON)
MESSAGE_OVERHEAD = 4  # Per-message overhead (role, separators)
IMAGE_TOKENS = 800


def estimate_tokens(text: str) -> int:
    """Estimate token count from character count."""
    return len(text) // CHARS_PER_TOKEN


def estimate_message_tokens(message: Mapping) -> int:
    """Estimate tokens for a single message.

    Raises TypeError for anything that does not look like a chat message.
    """
    if not isinstance(message, Mapping):
        raise TypeError(f"Cannot estimate tokens for {type(message).__name__}")

    total = MESSAGE_OVERHEAD
    content = message.get("content")

    if content is None:
        pass
    elif isinstance(content, str):
        total += estimate_tokens(content)
    elif isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                total += estimate_tokens(block.get("text", ""))
            elif block.get("type") in ("image_url", "image"):
                total += IMAGE_TOKENS
    else:
        raise TypeError(f"Unsupported message content: {type(content).__name__}")

    # Tool calls in assistant messages
    for tc in message.get("tool_calls") or []:
        fn = tc.get("function", {})
        args = fn.get("arguments", "")
        if isinstance(args, dict):
            args = json.dumps(args)
        total += estimate_tokens(str(fn.get("name", "")))
        total += estimate_tokens(str(args))

    return total


def estimate_messages_tokens(messages: list[dict]) -> int:
    """Estimate total tokens for a message list."""
    return sum(estimate_message_tokens(m) for m in messages)
