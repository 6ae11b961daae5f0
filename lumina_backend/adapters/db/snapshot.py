"""
Snapshot file I/O for the in-memory catalog.

The live catalog is a shared-cache in-memory SQLite database. These helpers
copy it to and from the single on-disk snapshot with the SQLite online-backup
API. They are blocking and meant to run on a worker thread.

Writes go to `<snapshot>.tmp`, are fsynced, then atomically replace the
previous snapshot, so a crash mid-write leaves the prior snapshot intact.
"""
from __future__ import annotations

import os
import sqlite3
import uuid
from pathlib import Path

from ...shared import CatalogCorruptError, get_logger

logger = get_logger(__name__)

TMP_SUFFIX = ".tmp"


def memory_uri() -> str:
    """Unique URI for a private shared-cache in-memory database."""
    return f"file:lumina-{uuid.uuid4().hex}?mode=memory&cache=shared"


def tmp_path_for(target: Path) -> Path:
    return target.with_name(target.name + TMP_SUFFIX)


def remove_stale_tmp(target: Path) -> bool:
    """Delete a temp file left behind by an interrupted persist."""
    tmp = tmp_path_for(target)
    if not tmp.exists():
        return False
    logger.warning("Removing stale snapshot temp file %s", tmp)
    tmp.unlink()
    return True


def load_snapshot(uri: str, source: Path) -> int:
    """
    Copy the snapshot at `source` into the in-memory database at `uri`.

    Returns the number of pages copied.

    Raises:
        CatalogCorruptError: the file is not a readable SQLite database.
    """
    try:
        src = sqlite3.connect(f"{source.resolve().as_uri()}?mode=ro", uri=True)
    except sqlite3.Error as exc:
        raise CatalogCorruptError(f"Cannot open catalog snapshot: {exc}") from exc
    try:
        dst = sqlite3.connect(uri, uri=True)
        try:
            # An in-memory destination cannot change page size during backup.
            page_size = int(src.execute("PRAGMA page_size").fetchone()[0])
            dst.execute(f"PRAGMA page_size = {page_size}")
            src.backup(dst)
            pages = dst.execute("PRAGMA page_count").fetchone()[0]
        finally:
            dst.close()
    except sqlite3.DatabaseError as exc:
        raise CatalogCorruptError(f"Catalog snapshot is unreadable: {exc}") from exc
    finally:
        src.close()
    return int(pages or 0)


def _fsync_file(path: Path) -> None:
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _fsync_dir(path: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync unsupported for %s", path)
    finally:
        os.close(fd)


def write_snapshot(uri: str, target: Path) -> int:
    """
    Serialize the in-memory database at `uri` to `target` atomically.

    Returns the size in bytes of the new snapshot.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = tmp_path_for(target)
    if tmp.exists():
        tmp.unlink()

    src = sqlite3.connect(uri, uri=True)
    try:
        dst = sqlite3.connect(str(tmp))
        try:
            src.backup(dst)
        finally:
            dst.close()
    finally:
        src.close()

    _fsync_file(tmp)
    os.replace(tmp, target)
    _fsync_dir(target.parent)
    return target.stat().st_size
