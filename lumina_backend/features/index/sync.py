"""
Incremental sync between a filesystem walk and the catalog.

A re-scan compares the stored `path -> lastModified` map with a fresh walk and
only writes the delta:
- added: path only in the walk,
- removed: path only in the catalog,
- changed: in both with a modification time that differs by more than the tolerance.

Writes go through the catalog store in batches without persisting; the
snapshot is written at checkpoints and once at the end. Pause, resume and
stop requests are honoured between batches only, never inside an open
transaction.
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ...config import DEFAULT_SOURCE_ID, SYNC_BATCH_SIZE, SYNC_CHECKPOINT_INTERVAL, SYNC_MTIME_TOLERANCE_MS
from ...shared import ErrorCode, Result, get_logger, log_structured, log_success, now
from ...utils import normalize_catalog_path
from ..catalog.query import QueryEngine
from ..catalog.store import CatalogStore
from .fs_walker import FileSystemWalker, WalkEntry

logger = get_logger(__name__)


@dataclass
class SyncDiff:
    added: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)


def diff(stored: Mapping[str, int], live: Mapping[str, int], tolerance_ms: int = 0) -> SyncDiff:
    """Classify every path of the stored and live maps. Lists are sorted."""
    result = SyncDiff()
    tolerance = max(0, int(tolerance_ms or 0))
    for path, mtime in live.items():
        if path not in stored:
            result.added.append(path)
        elif abs(int(mtime) - int(stored[path] or 0)) > tolerance:
            result.changed.append(path)
        else:
            result.unchanged += 1
    result.removed = [path for path in stored if path not in live]
    result.added.sort()
    result.changed.sort()
    result.removed.sort()
    return result


def _chunks(items: list[Any], size: int) -> Iterable[list[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _entry_mtime(entry: WalkEntry | Mapping[str, Any]) -> int:
    if isinstance(entry, WalkEntry):
        return entry.last_modified
    return int(entry.get("lastModified", entry.get("last_modified", 0)) or 0)


def _entry_path(entry: WalkEntry | Mapping[str, Any]) -> str:
    if isinstance(entry, WalkEntry):
        return entry.path
    return normalize_catalog_path(entry.get("path"))


class SyncEngine:
    """Applies filesystem deltas to the catalog. One sync at a time."""

    def __init__(
        self,
        db,
        store: CatalogStore,
        query_engine: QueryEngine,
        walker: FileSystemWalker | None = None,
        *,
        batch_size: int = SYNC_BATCH_SIZE,
        checkpoint_interval: int = SYNC_CHECKPOINT_INTERVAL,
        tolerance_ms: int = SYNC_MTIME_TOLERANCE_MS,
    ):
        self._db = db
        self._store = store
        self._query = query_engine
        self._walker = walker or FileSystemWalker()
        self._batch_size = max(1, int(batch_size))
        self._checkpoint_interval = max(0, int(checkpoint_interval))
        self._tolerance_ms = max(0, int(tolerance_ms))
        self._lock = asyncio.Lock()
        self._resume = asyncio.Event()
        self._resume.set()
        self._stop = asyncio.Event()
        self._progress: dict[str, Any] = {}

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def status(self) -> str:
        if not self.is_running:
            return "idle"
        if self._stop.is_set():
            return "stopping"
        if not self._resume.is_set():
            return "paused"
        return "scanning"

    def progress(self) -> dict[str, Any]:
        """Counters of the running (or last) sync plus its current status."""
        return {**self._progress, "status": self.status}

    def pause(self) -> bool:
        """Hold the running sync before its next batch. False when idle."""
        if not self.is_running:
            return False
        self._resume.clear()
        logger.info("Sync paused")
        return True

    def resume(self) -> bool:
        if not self.is_running:
            return False
        self._resume.set()
        logger.info("Sync resumed")
        return True

    def request_stop(self) -> bool:
        """Stop the running sync after the current batch; a paused sync is released."""
        if not self.is_running:
            return False
        self._stop.set()
        self._resume.set()
        logger.info("Sync stop requested")
        return True

    def _start_run(self, current_path: str) -> None:
        self._stop.clear()
        self._resume.set()
        self._progress = {"currentPath": current_path, "total": 0, "processed": 0, "written": 0, "deleted": 0}

    async def sync_roots(
        self,
        roots: list[str],
        source_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Result[dict]:
        """Walk `roots` and apply the delta. Missing roots are skipped and keep their records."""
        wanted = [normalize_catalog_path(r) for r in roots if str(r or "").strip()]
        existing = [r for r in wanted if os.path.isdir(r)]
        for missing in sorted(set(wanted) - set(existing)):
            logger.warning("Library root is not available, skipping: %s", missing)
        if not existing:
            return Result.Err(ErrorCode.INVALID_INPUT, "No library root is available", missing=wanted)
        if self._lock.locked():
            return Result.Err(ErrorCode.SCAN_BUSY, "A sync is already running")

        async with self._lock:
            self._start_run(", ".join(existing))
            try:
                walked = await asyncio.to_thread(self._walker.collect, existing)
            except OSError as exc:
                logger.error("Filesystem walk failed: %s", exc)
                return Result.Err(ErrorCode.SCAN_FAILED, f"Filesystem walk failed: {exc}")
            entries = list(walked.values())
            return await self._sync_locked(entries, existing, source_id or DEFAULT_SOURCE_ID, cancel_event)

    async def sync_entries(
        self,
        entries: Iterable[WalkEntry | Mapping[str, Any]],
        roots: list[str] | None = None,
        source_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Result[dict]:
        """
        Apply a walk result to the catalog.

        Args:
            entries: walked files (`WalkEntry` or `{path, size, mimeType, lastModified}` mappings).
            roots: limits removals to catalogued files under these roots; None means the whole catalog.
            source_id: import root tag for new records.
            cancel_event: checked between batches, like `request_stop`.
        """
        if self._lock.locked():
            return Result.Err(ErrorCode.SCAN_BUSY, "A sync is already running")
        async with self._lock:
            self._start_run(", ".join(roots or []))
            return await self._sync_locked(list(entries), roots, source_id or DEFAULT_SOURCE_ID, cancel_event)

    async def _sync_locked(
        self,
        entries: list[WalkEntry | Mapping[str, Any]],
        roots: list[str] | None,
        source_id: str,
        cancel_event: asyncio.Event | None,
    ) -> Result[dict]:
        started = now()
        stored_res = await self._store.get_all_path_mtimes(roots)
        if not stored_res.ok:
            return Result.Err(ErrorCode.SCAN_FAILED, stored_res.error or "Unable to read catalog state")

        live: dict[str, WalkEntry | Mapping[str, Any]] = {}
        for entry in entries:
            path = _entry_path(entry)
            if path:
                live[path] = entry
        delta = diff(stored_res.data or {}, {p: _entry_mtime(e) for p, e in live.items()}, self._tolerance_ms)

        report: dict[str, Any] = {
            "added": len(delta.added),
            "changed": len(delta.changed),
            "removed": len(delta.removed),
            "unchanged": delta.unchanged,
            "written": 0,
            "deleted": 0,
            "failed_batches": 0,
            "cancelled": False,
        }

        def _cancelled() -> bool:
            return self._stop.is_set() or bool(cancel_event is not None and cancel_event.is_set())

        self._progress["total"] = len(delta.added) + len(delta.changed) + len(delta.removed)

        since_checkpoint = 0
        to_write = [live[p] for p in delta.added + delta.changed]
        for batch in _chunks(to_write, self._batch_size):
            await self._resume.wait()
            if _cancelled():
                report["cancelled"] = True
                break
            payload = [e.to_mapping(source_id) if isinstance(e, WalkEntry) else e for e in batch]
            self._progress["currentPath"] = _entry_path(batch[0])
            res = await self._store.batch_insert(payload, persist=False, source_id=source_id)
            self._progress["processed"] += len(batch)
            if not res.ok:
                report["failed_batches"] += 1
                logger.warning("Sync batch of %s records rolled back: %s", len(batch), res.error)
                continue
            report["written"] += int(res.data or 0)
            self._progress["written"] = report["written"]
            since_checkpoint += len(batch)
            if self._checkpoint_interval and since_checkpoint >= self._checkpoint_interval:
                await self._checkpoint()
                since_checkpoint = 0

        if not report["cancelled"]:
            for batch in _chunks(delta.removed, self._batch_size):
                await self._resume.wait()
                if _cancelled():
                    report["cancelled"] = True
                    break
                self._progress["currentPath"] = batch[0]
                res = await self._store.delete_files_batch(batch, persist=False)
                self._progress["processed"] += len(batch)
                if not res.ok:
                    report["failed_batches"] += 1
                    logger.warning("Sync delete batch of %s paths rolled back: %s", len(batch), res.error)
                    continue
                report["deleted"] += int(res.data or 0)
                self._progress["deleted"] = report["deleted"]

        cache = await self._query.rebuild_folder_cache()
        if not cache.ok:
            logger.warning("Folder cache rebuild failed after sync: %s", cache.error)
        persisted = await self._db.apersist()
        report["persisted"] = bool(persisted.ok)
        report["duration_s"] = round(now() - started, 3)

        log_structured(logger, logging.INFO, "catalog sync finished", **report)
        if not persisted.ok:
            return Result.Err(persisted.code, persisted.error or "Snapshot persist failed", **report)
        if not delta.is_empty:
            log_success(
                logger,
                f"Sync applied +{report['added']} ~{report['changed']} -{report['removed']} "
                f"in {report['duration_s']}s",
            )
        return Result.Ok(report)

    async def _checkpoint(self) -> None:
        res = await self._db.apersist()
        if not res.ok:
            logger.warning("Sync checkpoint failed: %s", res.error)
