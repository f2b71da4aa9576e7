# tracedock/services/fingerprint.py
"""
Error fingerprinting.

Repeated errors are grouped by a stable key derived from:
    app name | normalized message | first application stack frame

Normalization collapses values that vary between occurrences of the same
error (ids, counters, addresses, quoted values), so "user 42 not found" and
"user 99 not found" land in the same group.

The functions here are pure and never raise for any string input.
"""

from __future__ import annotations

import re
from typing import Optional

_UUID_RE = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)
_INT_RE = re.compile(r"\b\d+\b")
_HEX_RE = re.compile(r"0x[0-9a-f]+", re.IGNORECASE)
_SINGLE_QUOTED_RE = re.compile(r"'[^']*'")
_DOUBLE_QUOTED_RE = re.compile(r'"[^"]*"')
_LINE_COL_RE = re.compile(r":\d+:\d+")

# Frames from these directories belong to dependencies, not the application.
VENDOR_MARKERS = ("node_modules", "site-packages", "dist-packages")

SEPARATOR = "|"
PREVIEW_LINES = 3


def normalize_message(message: Optional[str]) -> str:
    """Replace variable parts of an error message with placeholder tokens."""
    text = message or ""
    text = _UUID_RE.sub("<UUID>", text)
    text = _INT_RE.sub("<NUM>", text)
    text = _HEX_RE.sub("<HEX>", text)
    text = _SINGLE_QUOTED_RE.sub("'<STR>'", text)
    text = _DOUBLE_QUOTED_RE.sub('"<STR>"', text)
    return text.strip()


def first_app_frame(stack_trace: Optional[str]) -> str:
    """
    Return the first application frame with line/column numbers masked.

    A frame qualifies when it starts with "at " and does not point into a
    vendored dependency directory. No qualifying frame -> "".
    """
    if not stack_trace:
        return ""
    for line in stack_trace.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("at ") and not any(m in trimmed for m in VENDOR_MARKERS):
            return _LINE_COL_RE.sub(":<LINE>:<COL>", trimmed, count=1)
    return ""


def _rolling_hash(data: str) -> int:
    """32-bit signed `h * 31 + c` hash over UTF-16 code units."""
    h = 0
    encoded = data.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def fingerprint(message: Optional[str], stack_trace: Optional[str], app_name: Optional[str]) -> str:
    """
    Compute the grouping key for an error.

    Deterministic for identical inputs; different app names give different
    keys with high probability (32-bit hash, so not absolutely).
    """
    data = SEPARATOR.join(
        (app_name or "", normalize_message(message), first_app_frame(stack_trace))
    )
    return _to_base36(abs(_rolling_hash(data)))


def stack_trace_preview(stack_trace: Optional[str]) -> Optional[str]:
    """First three lines of a stack trace, or None when there is none."""
    if not stack_trace:
        return None
    return "\n".join(stack_trace.split("\n")[:PREVIEW_LINES])
