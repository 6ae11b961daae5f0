"""Shared utilities for the Lumina media catalog."""
from .errors import (
    CatalogCorruptError,
    CatalogError,
    ConflictError,
    NotFoundError,
    SchemaError,
    TransactionError,
    sanitize_error_message,
)
from .log import get_logger, log_structured, log_success, request_id_var
from .result import Result
from .time import ms, now, timer
from .types import EXTENSIONS, MIME_TYPES, ErrorCode, ItemType, MediaType, classify_file, mime_for

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "now",
    "ms",
    "timer",
    "ErrorCode",
    "MediaType",
    "ItemType",
    "EXTENSIONS",
    "MIME_TYPES",
    "classify_file",
    "mime_for",
    "sanitize_error_message",
    "CatalogError",
    "SchemaError",
    "TransactionError",
    "ConflictError",
    "NotFoundError",
    "CatalogCorruptError",
]
