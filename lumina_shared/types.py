"""
Shared types, enums, and constants.
"""
import os
from enum import Enum
from typing import Final, Literal, Optional

# File type classifications
MediaKind = Literal["image", "video", "audio", "unknown"]


class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    FORBIDDEN = "FORBIDDEN"

    # Feature / service availability
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    READ_ONLY = "READ_ONLY"

    # Storage
    DB_ERROR = "DB_ERROR"
    DB_CORRUPT = "DB_CORRUPT"
    SCHEMA_ERROR = "SCHEMA_ERROR"

    # Operation errors
    QUERY_FAILED = "QUERY_FAILED"
    SCAN_BUSY = "SCAN_BUSY"
    SCAN_FAILED = "SCAN_FAILED"


class MediaType(str, Enum):
    """Catalogued media families."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(m.value for m in cls)


class ItemType(str, Enum):
    """Kinds of items a favorite can point at."""

    FILE = "file"
    FOLDER = "folder"


# Extension -> MIME type for every supported file
MIME_TYPES: Final[dict[str, str]] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".wma": "audio/x-ms-wma",
}

# File extensions by type
EXTENSIONS: Final[dict[MediaKind, set[str]]] = {
    "image": {".jpg", ".jpeg", ".png", ".gif", ".webp"},
    "video": {".mp4", ".webm", ".mov"},
    "audio": {".mp3", ".wav", ".flac", ".m4a", ".aac", ".ogg", ".wma"},
    "unknown": set(),
}


def classify_file(filename: str) -> MediaKind:
    """
    Classify file by extension.

    Args:
        filename: File name or path

    Returns:
        Media kind (image, video, audio, unknown)
    """
    ext = os.path.splitext(filename)[1].lower()

    for kind, exts in EXTENSIONS.items():
        if ext in exts:
            return kind

    return "unknown"


def mime_for(filename: str) -> Optional[str]:
    """Return the MIME type for a supported file, None otherwise."""
    return MIME_TYPES.get(os.path.splitext(filename)[1].lower())
