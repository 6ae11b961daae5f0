"""Backend-facing alias for shared utilities."""

from __future__ import annotations

from lumina_shared import (
    EXTENSIONS,
    MIME_TYPES,
    CatalogCorruptError,
    CatalogError,
    ConflictError,
    ErrorCode,
    ItemType,
    MediaType,
    NotFoundError,
    Result,
    SchemaError,
    TransactionError,
    classify_file,
    get_logger,
    log_structured,
    log_success,
    mime_for,
    ms,
    now,
    request_id_var,
    sanitize_error_message,
    timer,
)

__all__ = [
    "Result",
    "ErrorCode",
    "MediaType",
    "ItemType",
    "EXTENSIONS",
    "MIME_TYPES",
    "classify_file",
    "mime_for",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "sanitize_error_message",
    "ms",
    "now",
    "timer",
    "CatalogError",
    "SchemaError",
    "TransactionError",
    "ConflictError",
    "NotFoundError",
    "CatalogCorruptError",
]
