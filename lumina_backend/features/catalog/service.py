"""
Catalog service: the interface the HTTP layer and clients consume.

Every method returns a `Result`; storage exceptions never escape.
"""
from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ...config import DEFAULT_SOURCE_ID
from ...shared import ErrorCode, Result, get_logger
from .favorites import Favorites
from .models import FileQuery
from .query import QueryEngine
from .rename import RenameManager
from .store import CatalogStore

if TYPE_CHECKING:
    from ..index.sync import SyncEngine

logger = get_logger(__name__)


class CatalogService:
    def __init__(
        self,
        db,
        store: CatalogStore,
        query: QueryEngine,
        favorites: Favorites,
        renamer: RenameManager,
        sync_engine: SyncEngine,
    ):
        self.db = db
        self.store = store
        self.query = query
        self.favorites = favorites
        self.renamer = renamer
        self.sync_engine = sync_engine

    async def query_files(self, opts: FileQuery | Mapping[str, Any], *, with_total: bool = True) -> Result[dict]:
        """`{files, total?}`; `favorites_only` switches to the user's favorite files."""
        query = opts if isinstance(opts, FileQuery) else FileQuery.from_params(opts)
        if query.favorites_only and query.user_id:
            rows = await self.favorites.query_favorite_files(query.user_id, query)
        else:
            rows = await self.query.query_files(query)
        if not rows.ok:
            return Result.Err(rows.code, rows.error or "File query failed")
        payload: dict[str, Any] = {"files": [r.to_dict() for r in rows.data or []]}
        if with_total:
            counted = await self.query.count_files(query)
            if not counted.ok:
                return Result.Err(counted.code, counted.error or "File count failed")
            payload["total"] = counted.data
        return Result.Ok(payload, limit=query.limit, offset=query.offset)

    async def query_folders(
        self,
        parent_path: str | None = None,
        favorites_only: bool = False,
        user_id: str | None = None,
        allowed_paths: list[str] | None = None,
    ) -> Result[dict]:
        res = await self.query.query_folders(parent_path, favorites_only, user_id, allowed_paths)
        if not res.ok:
            return Result.Err(res.code, res.error or "Folder query failed")
        return Result.Ok({"folders": [f.to_dict() for f in res.data or []]})

    async def toggle_favorite(self, user_id: str, item_id: str, item_type: str) -> Result[dict]:
        res = await self.favorites.toggle(user_id, item_id, item_type)
        if not res.ok:
            return Result.Err(res.code, res.error or "Favorite update failed")
        return Result.Ok({"isFavorite": bool(res.data)})

    async def list_favorite_ids(self, user_id: str) -> Result[dict]:
        return await self.favorites.list_favorite_ids(user_id)

    async def rename_file(self, old_path: str, new_path: str, new_name: str | None = None) -> Result[dict]:
        res = await self.renamer.rename(old_path, new_path, new_name)
        if not res.ok:
            return Result.Err(res.code, res.error or "Rename failed", ok=False)
        return res

    async def delete_file(self, path: str, file_id: str | None = None) -> Result[dict]:
        res = await self.renamer.delete(path, file_id)
        if not res.ok:
            return Result.Err(res.code, res.error or "Delete failed")
        return Result.Ok({"ok": True, "deleted": int(res.data or 0)})

    async def delete_folder(self, path: str) -> Result[dict]:
        res = await self.renamer.delete_folder(path)
        if not res.ok:
            return Result.Err(res.code, res.error or "Folder delete failed")
        logger.info("Removed %s catalogued files under %s", res.data, path)
        return Result.Ok({"ok": True, "deleted": int(res.data or 0)})

    async def get_stats(self, allowed_paths: list[str] | None = None) -> Result[dict]:
        return await self.query.get_stats(allowed_paths)

    async def sync(
        self,
        roots: list[str] | None = None,
        source_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Result[dict]:
        """Incremental re-scan of `roots` (defaults to the configured library roots)."""
        targets = list(roots) if roots else self.query.library_roots
        if not targets:
            return Result.Err(ErrorCode.INVALID_INPUT, "No library roots configured")
        return await self.sync_engine.sync_roots(targets, source_id or DEFAULT_SOURCE_ID, cancel_event)

    def control_sync(self, action: str) -> Result[dict]:
        """Pause, resume or stop the running sync. `cancel` is an alias of `stop`."""
        verb = str(action or "").strip().lower()
        engine = self.sync_engine
        handlers = {"pause": engine.pause, "resume": engine.resume, "stop": engine.request_stop, "cancel": engine.request_stop}
        handler = handlers.get(verb)
        if handler is None:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Unknown scan action: {action!r}")
        applied = handler()
        return Result.Ok({"action": verb, "applied": applied, "status": engine.status})

    def status(self) -> dict[str, Any]:
        return {
            "readOnly": self.db.read_only,
            "readOnlyReason": self.db.read_only_reason,
            "syncRunning": self.sync_engine.is_running,
            "syncProgress": self.sync_engine.progress(),
            "libraryRoots": self.query.library_roots,
        }
