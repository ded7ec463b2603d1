"""
Linear-time text scanners used on untrusted query text.

These replace whitespace-collapsing and splitting regexes whose repeated
groups can backtrack badly on whitespace-heavy input.
"""

from typing import List

_WHITESPACE = frozenset(" \t\n\r\f\v")


def collapse_whitespace(text: str) -> str:
    """Collapse every whitespace run into a single space and trim both ends."""
    result: List[str] = []
    in_whitespace = False
    for ch in text:
        if ch in _WHITESPACE:
            if not in_whitespace and result:
                result.append(" ")
            in_whitespace = True
        else:
            in_whitespace = False
            result.append(ch)
    if result and result[-1] == " ":
        result.pop()
    return "".join(result)


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    count = 0
    in_word = False
    for ch in text:
        if ch in _WHITESPACE:
            in_word = False
        elif not in_word:
            in_word = True
            count += 1
    return count


def split_on_separators(text: str, separators: List[str]) -> List[str]:
    """Split text on each separator in turn, case-insensitively.

    Separators are applied in order, each to every fragment produced by the
    previous one. Fragments are trimmed and empty ones dropped.
    """
    parts = [text]
    for sep in separators:
        lower_sep = sep.lower()
        new_parts: List[str] = []
        for part in parts:
            lower_part = part.lower()
            start = 0
            idx = lower_part.find(lower_sep, start)
            while idx != -1:
                segment = part[start:idx].strip()
                if segment:
                    new_parts.append(segment)
                start = idx + len(sep)
                idx = lower_part.find(lower_sep, start)
            remainder = part[start:].strip()
            if remainder:
                new_parts.append(remainder)
        parts = new_parts
    return parts
