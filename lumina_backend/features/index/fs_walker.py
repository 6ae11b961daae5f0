"""
FileSystemWalker: filesystem traversal and I/O throttling for library scans.

Produces one `WalkEntry` per supported media file. Hidden files and hidden
directories (leading dot) are skipped; symlinked files are indexed but
symlinked directories are not followed.
"""
from __future__ import annotations

import os
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from ...shared import EXTENSIONS, classify_file, get_logger, mime_for
from ...utils import normalize_catalog_path

logger = get_logger(__name__)

_EXT_TO_KIND: dict[str, str] = {
    ext: kind for kind, exts in EXTENSIONS.items() for ext in exts
}


@dataclass(frozen=True)
class WalkEntry:
    """One discovered file as the sync engine consumes it."""

    path: str
    size: int
    mime_type: str | None
    media_type: str
    last_modified: int  # epoch milliseconds

    def to_mapping(self, source_id: str) -> dict:
        return {
            "path": self.path,
            "size": self.size,
            "mimeType": self.mime_type,
            "mediaType": self.media_type,
            "lastModified": self.last_modified,
            "sourceId": source_id,
        }


class FileSystemWalker:
    """
    Walks library roots and emits supported media files.
    Supports optional I/O throttling (operations per second, 0 disables).
    """

    def __init__(self, scan_iops_limit: float = 0.0) -> None:
        self._scan_iops_limit = scan_iops_limit
        self._scan_iops_next_ts = 0.0

    # ------------------------------------------------------------------
    # I/O throttling
    # ------------------------------------------------------------------

    def _scan_iops_wait(self) -> None:
        """
        Best-effort I/O pacing for directory scans.
        Runs in the worker thread to avoid blocking the event loop.
        """
        limit = self._scan_iops_limit
        if limit <= 0.0:
            return
        now = time.perf_counter()
        next_ts = self._scan_iops_next_ts
        if next_ts > now:
            time.sleep(next_ts - now)
            now = time.perf_counter()
        self._scan_iops_next_ts = max(next_ts, now) + 1.0 / limit

    # ------------------------------------------------------------------
    # File iteration
    # ------------------------------------------------------------------

    def iter_files(self, directory: Path, recursive: bool = True) -> Iterator[os.DirEntry]:
        """
        Generator: iterate over supported media files under `directory` (streaming).

        Unreadable directories are skipped with a debug log.
        """
        stack: list[Path] = [directory]
        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as it:
                    for entry in it:
                        self._scan_iops_wait()
                        if entry.name.startswith("."):
                            continue
                        next_dir = self._next_dir(entry)
                        if next_dir is not None:
                            if recursive:
                                stack.append(next_dir)
                            continue
                        if self._is_candidate(entry):
                            yield entry
            except OSError:
                logger.debug("Skipping unreadable directory %s", current, exc_info=True)
                continue

    @staticmethod
    def is_supported_file(path: Path | str) -> bool:
        ext = os.path.splitext(str(path))[1].lower()
        if ext in _EXT_TO_KIND:
            return True
        return classify_file(str(path)) != "unknown"

    @staticmethod
    def _next_dir(entry: os.DirEntry) -> Path | None:
        try:
            if entry.is_dir(follow_symlinks=False):
                return Path(entry.path)
        except OSError:
            return None
        return None

    def _is_candidate(self, entry: os.DirEntry) -> bool:
        try:
            if not entry.is_file(follow_symlinks=True):
                return False
        except OSError:
            return False
        return self.is_supported_file(entry.name)

    @staticmethod
    def _to_entry(entry: os.DirEntry) -> WalkEntry | None:
        try:
            st = entry.stat(follow_symlinks=True)
        except OSError:
            return None
        path = normalize_catalog_path(entry.path)
        return WalkEntry(
            path=path,
            size=int(st.st_size),
            mime_type=mime_for(entry.name),
            media_type=_EXT_TO_KIND.get(os.path.splitext(entry.name)[1].lower(), classify_file(entry.name)),
            last_modified=int(st.st_mtime_ns // 1_000_000),
        )

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def walk(self, root: Path | str, recursive: bool = True) -> Iterator[WalkEntry]:
        """Yield a `WalkEntry` for every supported file below `root`."""
        self._scan_iops_next_ts = 0.0
        for entry in self.iter_files(Path(root), recursive):
            item = self._to_entry(entry)
            if item is not None:
                yield item

    def collect(self, roots: list[str]) -> dict[str, WalkEntry]:
        """Walk every root; returns `path -> WalkEntry`. Blocking, run it on a worker thread."""
        found: dict[str, WalkEntry] = {}
        for root in roots:
            for item in self.walk(root):
                found[item.path] = item
        return found
