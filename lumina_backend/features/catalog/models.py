"""
Catalog records and query options.
"""
from __future__ import annotations

import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from ...config import DEFAULT_SOURCE_ID
from ...shared import MediaType, classify_file, mime_for
from ...utils import normalize_catalog_path, parse_bool, parse_int, split_list
from .ids import derive_id

ROOT_ALIASES = frozenset({"", "/", "root"})


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class FileRecord:
    """One catalogued media file. `id`, `name` and `folder_path` derive from `path`."""

    path: str
    size: int
    mime_type: str | None
    media_type: str
    last_modified: int
    source_id: str = DEFAULT_SOURCE_ID
    name: str = ""
    folder_path: str = ""
    thumb_width: int | None = None
    thumb_height: int | None = None
    thumb_aspect_ratio: float | None = None
    created_at: int | None = None
    is_favorite: bool = False
    id: str = field(init=False, default="")

    def __post_init__(self) -> None:
        self.path = normalize_catalog_path(self.path)
        self.id = derive_id(self.path)
        if not self.name:
            self.name = posixpath.basename(self.path)
        if not self.folder_path:
            self.folder_path = posixpath.dirname(self.path)

    def validate(self) -> None:
        """Raise ValueError when the record cannot be stored."""
        if not self.path or self.path == "/":
            raise ValueError("FileRecord.path is required")
        if self.media_type not in MediaType.values():
            raise ValueError(f"Unsupported media type {self.media_type!r} for {self.path}")
        if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size < 0:
            raise ValueError(f"Invalid size {self.size!r} for {self.path}")
        if isinstance(self.last_modified, bool) or not isinstance(self.last_modified, int):
            raise ValueError(f"Invalid lastModified {self.last_modified!r} for {self.path}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], source_id: str | None = None) -> "FileRecord":
        """
        Build a record from walker output or API payloads (camelCase or snake_case).

        Raises:
            KeyError, TypeError, ValueError: on missing or malformed fields.
        """
        path = str(_first(data, "path", default="") or "")
        media_type = _first(data, "mediaType", "media_type") or classify_file(path)
        return cls(
            path=path,
            size=int(_first(data, "size", default=0)),
            mime_type=_first(data, "mimeType", "mime_type", "type") or mime_for(path),
            media_type=str(media_type),
            last_modified=int(_first(data, "lastModified", "last_modified")),
            source_id=str(source_id or _first(data, "sourceId", "source_id", default=DEFAULT_SOURCE_ID)),
            name=str(_first(data, "name", default="") or ""),
            thumb_width=_optional_int(_first(data, "thumbWidth", "thumb_width")),
            thumb_height=_optional_int(_first(data, "thumbHeight", "thumb_height")),
            thumb_aspect_ratio=_first(data, "thumbAspectRatio", "thumb_aspect_ratio"),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FileRecord":
        record = cls(
            path=row["path"],
            size=int(row.get("size") or 0),
            mime_type=row.get("type"),
            media_type=row.get("media_type") or "",
            last_modified=int(row.get("last_modified") or 0),
            source_id=row.get("source_id") or DEFAULT_SOURCE_ID,
            name=row.get("name") or "",
            folder_path=row.get("folder_path") or "",
            thumb_width=row.get("thumb_width"),
            thumb_height=row.get("thumb_height"),
            thumb_aspect_ratio=row.get("thumb_aspect_ratio"),
            created_at=row.get("created_at"),
            is_favorite=bool(row.get("is_favorite")),
        )
        # Rows are keyed by their stored id.
        if row.get("id"):
            record.id = str(row["id"])
        return record

    def relocated(self, new_path: str, new_name: str | None = None) -> "FileRecord":
        """Copy of this record at another path; every non-identity field is kept."""
        moved = replace(self, path=new_path, name=new_name or "", folder_path="")
        return moved

    def to_params(self) -> tuple:
        return (
            self.id,
            self.path,
            self.name,
            self.folder_path,
            self.size,
            self.mime_type,
            self.media_type,
            self.last_modified,
            self.source_id,
            self.created_at,
            self.thumb_width,
            self.thumb_height,
            self.thumb_aspect_ratio,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "folderPath": self.folder_path,
            "size": self.size,
            "mimeType": self.mime_type,
            "mediaType": self.media_type,
            "lastModified": self.last_modified,
            "sourceId": self.source_id,
            "thumbWidth": self.thumb_width,
            "thumbHeight": self.thumb_height,
            "thumbAspectRatio": self.thumb_aspect_ratio,
            "isFavorite": self.is_favorite,
        }


@dataclass
class FolderAggregate:
    """Derived summary of every file under a folder (recursive)."""

    path: str
    media_count: int = 0
    cover_file_id: str | None = None
    latest_modified: int | None = None
    name: str = ""
    parent_path: str | None = None
    is_favorite: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self.name = posixpath.basename(self.path) or self.path
        if self.parent_path is None:
            self.parent_path = posixpath.dirname(self.path)

    def absorb(self, count: int, latest: int | None, cover_file_id: str | None) -> None:
        """Fold one group of files into this aggregate; the most recent file wins the cover."""
        self.media_count += int(count or 0)
        if latest is None:
            return
        if self.latest_modified is None or latest > self.latest_modified:
            self.latest_modified = int(latest)
            self.cover_file_id = cover_file_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "parentPath": self.parent_path,
            "mediaCount": self.media_count,
            "coverFileId": self.cover_file_id,
            "isFavorite": self.is_favorite,
        }


@dataclass
class FileQuery:
    """Filter, ordering and paging options understood by the query engine."""

    folder_path: str | None = None
    recursive: bool = False
    media_type: list[str] = field(default_factory=list)
    exclude_media_type: list[str] = field(default_factory=list)
    source_id: str | None = None
    user_id: str | None = None
    random: bool = False
    allowed_paths: list[str] | None = None
    favorites_only: bool = False
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        self.media_type = split_list(self.media_type)
        self.exclude_media_type = split_list(self.exclude_media_type)
        if self.folder_path is not None:
            self.folder_path = normalize_catalog_path(self.folder_path)
            if self.folder_path.lower() == "root":
                self.folder_path = None
        if self.allowed_paths is not None:
            self.allowed_paths = [normalize_catalog_path(p) for p in self.allowed_paths if str(p or "").strip()]

    def restricted(self, allowed_paths: list[str] | None) -> "FileQuery":
        """Copy with the caller's visibility boundary applied."""
        return replace(self, allowed_paths=None if allowed_paths is None else list(allowed_paths))

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "FileQuery":
        """Parse request parameters (camelCase, as sent by the clients)."""
        folder = _first(params, "folderPath", "folder_path")
        return cls(
            folder_path=str(folder) if folder not in (None, "") else None,
            recursive=parse_bool(_first(params, "recursive"), False),
            media_type=split_list(_first(params, "mediaType", "media_type")),
            exclude_media_type=split_list(_first(params, "excludeMediaType", "exclude_media_type")),
            source_id=_first(params, "sourceId", "source_id") or None,
            random=parse_bool(_first(params, "random"), False),
            favorites_only=parse_bool(_first(params, "favorites", "favoritesOnly", "favorites_only"), False),
            limit=parse_int(_first(params, "limit"), 0) or None,
            offset=max(0, parse_int(_first(params, "offset"), 0)),
        )
