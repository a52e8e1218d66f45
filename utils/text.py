"""
Text helpers for extracted HTML: plain-text conversion and reading stats.
"""

import html
import re
from typing import NamedTuple

WORDS_PER_MINUTE = 225

_SCRIPT_STYLE = re.compile(r"<(script|style|noscript)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")


class ReadingStats(NamedTuple):
    word_count: int
    reading_time_seconds: int


def html_to_text(content: str) -> str:
    """Strip markup, keeping a space where every tag was so words never fuse."""
    text = _COMMENT.sub(" ", content)
    text = _SCRIPT_STYLE.sub(" ", text)
    text = _TAG.sub(" ", text)
    text = html.unescape(text)
    return _WHITESPACE.sub(" ", text).strip()


def calculate_reading_stats(content: str) -> ReadingStats:
    """Word count and reading time at 225 words per minute."""
    words = html_to_text(content).split()
    word_count = len(words)
    return ReadingStats(
        word_count=word_count,
        reading_time_seconds=round(word_count / WORDS_PER_MINUTE * 60),
    )
