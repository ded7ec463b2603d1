"""
Token counters.

A token counter is any deterministic ``Callable[[str], int]``. The default is
a character-based estimate; ``make_tiktoken_counter`` builds an exact one for
OpenAI-style encodings when tiktoken is installed.
"""

import logging
import math
from typing import Callable

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

CHARS_PER_TOKEN = 4
DEFAULT_ENCODING = "cl100k_base"


def estimate_tokens_simple(text: str) -> int:
    """Roughly four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def make_tiktoken_counter(encoding_name: str = DEFAULT_ENCODING) -> TokenCounter:
    """Build a counter backed by a tiktoken encoding."""
    try:
        import tiktoken
    except ImportError:
        raise ImportError("tiktoken not installed. Install with: pip install 'context-rag[tiktoken]'")

    encoding = tiktoken.get_encoding(encoding_name)
    logger.debug(f"Using tiktoken encoding {encoding_name} for token counting")

    def count_tokens(text: str) -> int:
        if not text:
            return 0
        return len(encoding.encode(text, disallowed_special=()))

    return count_tokens
