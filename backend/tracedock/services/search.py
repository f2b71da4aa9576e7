# tracedock/services/search.py
"""
Advanced search-string parsing for GET /logs.

Syntax:
    level:error app:"checkout api" timeout user_id:42

- `key:value` and `key:"quoted value"` are extracted as inline filters.
- `level`, `app` and `session` map onto the structured log filters, but only
  when the caller did not pass that filter explicitly.
- Any other key becomes a metadata filter.
- Whatever text is left over is the free-text component.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

_FILTER_RE = re.compile(r'(\w+):(?:"([^"]+)"|(\S+))')
_FTS_STRIP_RE = re.compile(r"['\"]")
_WORD_RE = re.compile(r"\w")

# Inline key -> structured LogsQuery field.
STRUCTURED_KEYS = {
    "level": "level",
    "app": "app_name",
    "session": "session_id",
}


@dataclass(frozen=True)
class ParsedSearch:
    filters: Dict[str, str] = field(default_factory=dict)
    free_text: str = ""

    @property
    def metadata_filters(self) -> Dict[str, str]:
        return {k: v for k, v in self.filters.items() if k not in STRUCTURED_KEYS}


def parse_search_query(search: Optional[str]) -> ParsedSearch:
    """Split a search string into inline filters and free text."""
    if not search:
        return ParsedSearch()

    filters: Dict[str, str] = {}
    for match in _FILTER_RE.finditer(search):
        key = match.group(1).lower()
        filters[key] = match.group(2) if match.group(2) is not None else match.group(3)

    remaining = _FILTER_RE.sub(" ", search)
    free_text = " ".join(remaining.split())
    return ParsedSearch(filters=filters, free_text=free_text)


def search_tokens(free_text: str) -> List[str]:
    """Whitespace tokens with quote characters removed."""
    return [t for t in _FTS_STRIP_RE.sub("", free_text or "").split() if t]


def fts_match_expression(free_text: str) -> Optional[str]:
    """
    Build an FTS5 MATCH expression: every token is a quoted prefix query.

    `connection refused` -> `"connection"* "refused"*` (implicit AND).
    Returns None when nothing indexable remains (e.g. only punctuation);
    callers then use substring matching.
    """
    tokens = search_tokens(free_text)
    if not tokens or not all(_WORD_RE.search(t) for t in tokens):
        return None
    return " ".join(f'"{t}"*' for t in tokens)
