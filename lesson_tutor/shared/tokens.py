"""
Token counting and truncation utilities using tiktoken.
"""

from functools import lru_cache
from typing import Optional
import tiktoken

from lesson_tutor.shared.config import settings


@lru_cache(maxsize=8)
def get_encoding(model: Optional[str] = None) -> tiktoken.Encoding:
    """
    Get tiktoken encoding for a model.

    Args:
        model: Model name (e.g., "gpt-4o-mini")
               If None, uses default from settings

    Returns:
        tiktoken Encoding object
    """
    model = model or settings.llm.default_model

    try:
        encoding = tiktoken.encoding_for_model(model)
    except KeyError:
        # Fallback for unknown models (e.g. Anthropic)
        encoding = tiktoken.get_encoding("cl100k_base")

    return encoding


def count_tokens(text: str, model: Optional[str] = None) -> int:
    """Count tokens in text."""
    encoding = get_encoding(model)
    return len(encoding.encode(text))


def truncate_to_tokens(
    text: str,
    max_tokens: int,
    model: Optional[str] = None,
    suffix: str = "..."
) -> str:
    """
    Truncate text to maximum token count.

    Args:
        text: Text to truncate
        max_tokens: Maximum number of tokens
        model: Model name for encoding selection
        suffix: Suffix to append if truncated

    Returns:
        Truncated text, suffix included, within max_tokens
    """
    encoding = get_encoding(model)
    tokens = encoding.encode(text)

    if len(tokens) <= max_tokens:
        return text

    if not suffix:
        return encoding.decode(tokens[:max_tokens])

    # Reserve space for suffix
    suffix_tokens = count_tokens(suffix, model)
    if max_tokens > suffix_tokens:
        return encoding.decode(tokens[:max_tokens - suffix_tokens]) + suffix
    return suffix

