"""Diff formatting and line anchoring."""

from review_worker.diff.formatter import (
    MAX_CONTEXT_CHARS,
    format_diff_context,
    format_diff_summary,
    format_reply_context,
)
from review_worker.diff.matcher import find_line_in_patch, normalize_code

__all__ = [
    "MAX_CONTEXT_CHARS",
    "find_line_in_patch",
    "format_diff_context",
    "format_diff_summary",
    "format_reply_context",
    "normalize_code",
]
