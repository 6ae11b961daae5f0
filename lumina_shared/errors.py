"""
Catalog exception taxonomy and helpers for sanitizing error messages before
they reach clients.

Exceptions are raised inside storage code and converted to `Result.Err` at
service boundaries; callers never see them directly.
"""
from __future__ import annotations

import os
import re
from typing import Any

from .log import get_logger
from .types import ErrorCode

logger = get_logger(__name__)
_DEBUG_MODE = os.getenv("LUMINA_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")
_WINDOWS_PATH_RE = re.compile(r"[A-Za-z]:\\[^\s]+")
_UNC_PATH_RE = re.compile(r"\\\\[^\s\\]+\\[^\s]+")
_UNIX_PATH_RE = re.compile(r"(?<![A-Za-z0-9:/?&=#%])/(?!/)[^\s#?]+")


class CatalogError(Exception):
    """Base class for catalog failures."""

    code: ErrorCode = ErrorCode.DB_ERROR


class SchemaError(CatalogError):
    """An ALTER or data migration failed. Logged, never fatal."""

    code = ErrorCode.SCHEMA_ERROR


class TransactionError(CatalogError):
    """A write inside a transaction failed; the transaction was rolled back."""

    code = ErrorCode.DB_ERROR


class ConflictError(TransactionError):
    """The target identity of a write is already taken."""

    code = ErrorCode.CONFLICT


class NotFoundError(CatalogError):
    """No catalogued record matches the requested path."""

    code = ErrorCode.NOT_FOUND


class CatalogCorruptError(CatalogError):
    """The on-disk snapshot cannot be loaded. Fatal at startup."""

    code = ErrorCode.DB_CORRUPT


def _mask_paths(value: str) -> str:
    """Mask path-looking substrings to avoid leaking filesystem structure."""
    cleaned = _WINDOWS_PATH_RE.sub("[path]", value)
    cleaned = _UNC_PATH_RE.sub("[path]", cleaned)
    cleaned = _UNIX_PATH_RE.sub("[path]", cleaned)
    return cleaned


def sanitize_error_message(exc: Any, fallback: str) -> str:
    """
    Build a safe error message for clients.

    Args:
        exc: Exception or raw value to sanitize.
        fallback: Fallback message to show when nothing meaningful remains.

    Returns:
        A string suitable for inclusion in API responses.
    """
    if not fallback:
        fallback = "An error occurred"

    if exc is None:
        return fallback

    raw = str(exc)
    if not raw:
        return fallback

    if _DEBUG_MODE:
        logger.debug("Unmasked error payload: %s", raw)
        return f"{fallback}: {raw[:200]}"

    sanitized = _mask_paths(raw.replace(os.getcwd(), "[cwd]"))
    sanitized = " ".join(sanitized.splitlines()).strip()

    if sanitized:
        return f"{fallback}: {sanitized[:200]}"
    return fallback
