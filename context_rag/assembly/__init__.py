"""
Context assembly and token counting.
"""

from .assembler import ContextAssembler, create_context_assembler
from .tokens import TokenCounter, estimate_tokens_simple, make_tiktoken_counter

__all__ = [
    "ContextAssembler",
    "TokenCounter",
    "create_context_assembler",
    "estimate_tokens_simple",
    "make_tiktoken_counter",
]
