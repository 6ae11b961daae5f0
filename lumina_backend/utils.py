"""
Utility helpers shared across backend modules.
"""
from __future__ import annotations

import os
from typing import Any

BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "enabled"})
BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})


def parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in BOOL_TRUE_VALUES:
            return True
        if normalized in BOOL_FALSE_VALUES:
            return False
        try:
            return bool(float(normalized))
        except ValueError:
            pass
    return default


def parse_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def env_bool(name: str, default: bool) -> bool:
    if not name:
        return default
    raw = os.environ.get(name)
    if raw is None:
        return default
    return parse_bool(raw, default)


def split_list(value: Any, sep: str = ",") -> list[str]:
    """Split a comma separated value (or list of values) into stripped, non-empty items."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        items: list[str] = []
        for v in value:
            items.extend(split_list(v, sep))
        return items
    return [part.strip() for part in str(value).split(sep) if part.strip()]


def normalize_catalog_path(path: Any) -> str:
    """
    Canonical form used for catalog paths: POSIX separators, no trailing slash.

    The filesystem root ("/") is kept as-is.
    """
    raw = str(path or "").strip().replace("\\", "/")
    while "//" in raw:
        raw = raw.replace("//", "/")
    if len(raw) > 1 and raw.endswith("/"):
        raw = raw.rstrip("/") or "/"
    return raw


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so `%` and `_` in names match literally (use with ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
