"""
Partial-update sanitizer.

The merchant application is edited through a long multi-section form that
autosaves. Each save carries whatever the form currently holds, so sections the
client has not touched arrive as null, "" or empty lists. Merging those naively
would erase previously completed sections; this module reduces a payload to the
values that actually carry information.

Rules (applied per field, recursively into dicts and lists):
- None is dropped; deletion is never expressed with null
- temporal fields keep date/datetime values, parse non-blank strings, drop the rest
- blank strings are dropped
- lists lose None elements, dict elements are sanitized, empty lists are dropped
- dicts are sanitized, empty dicts are dropped
- everything else passes through

`sanitize` never raises and is idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)

_DROP = object()


def parse_temporal(value: Any) -> date | datetime | None:
    """
    Accept date/datetime as-is; parse ISO-8601 strings ("2024-01-15",
    "2024-01-15T10:30:00", trailing "Z"). Returns None for anything unusable.
    """
    if isinstance(value, (datetime, date)):
        return value
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        if len(raw) == 10:
            return date.fromisoformat(raw)
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def _is_blank(value: Any) -> bool:
    return isinstance(value, str) and not value.strip()


def _clean(value: Any) -> Any:
    if value is None or _is_blank(value):
        return _DROP
    if isinstance(value, Mapping):
        nested = _clean_mapping(value, frozenset())
        return nested if nested else _DROP
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            cleaned = _clean(item)
            if cleaned is not _DROP:
                items.append(cleaned)
        return items if items else _DROP
    return value


def _clean_mapping(payload: Mapping, temporal: frozenset[str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if key in temporal:
            parsed = parse_temporal(value)
            if parsed is None:
                logger.debug("Dropping unparseable temporal field %s", key)
                continue
            out[key] = parsed
            continue
        cleaned = _clean(value)
        if cleaned is not _DROP:
            out[key] = cleaned
    return out


def sanitize(payload: Mapping[str, Any] | None, temporal_fields: Iterable[str] = ()) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        return {}
    try:
        return _clean_mapping(payload, frozenset(temporal_fields))
    except Exception:
        # Malformed input degrades to omission, not failure.
        logger.exception("Sanitizer failed on payload with keys %s", list(payload.keys())[:20])
        return {}
