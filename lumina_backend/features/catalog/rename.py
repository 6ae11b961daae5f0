"""
Rename and delete consistency.

A rename moves a record to a new identity (its id derives from the path) in
one transaction and carries favorites and thumbnail metadata along, so a file
is never visible under both identities and never loses its linkage.
"""
from __future__ import annotations

from ...shared import CatalogError, ConflictError, ErrorCode, NotFoundError, Result, get_logger
from ...utils import normalize_catalog_path
from .models import FileRecord
from .store import UPSERT_SQL, CatalogStore, require_ok

logger = get_logger(__name__)


class RenameManager:
    def __init__(self, db, store: CatalogStore):
        self._db = db
        self._store = store

    async def rename(self, old_path: str, new_path: str, new_name: str | None = None) -> Result[dict]:
        """
        Move the record at `old_path` to `new_path`.

        Errors:
            INVALID_INPUT: missing paths.
            NOT_FOUND: nothing is catalogued at `old_path`.
            CONFLICT: `new_path` is already catalogued.
        """
        src = normalize_catalog_path(old_path)
        dst = normalize_catalog_path(new_path)
        if not src or not dst:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing old or new path")
        if src == dst:
            return Result.Err(ErrorCode.INVALID_INPUT, "Old and new path are identical")

        try:
            async with self._db.atransaction(persist=True) as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or "Rename failed")
                rows = require_ok(await self._db.aquery("SELECT * FROM files WHERE path = ?", (src,)), "Lookup")
                if not rows:
                    raise NotFoundError(f"File is not catalogued: {src}")
                taken = require_ok(await self._db.aquery("SELECT 1 FROM files WHERE path = ?", (dst,)), "Lookup")
                if taken:
                    raise ConflictError(f"Target is already catalogued: {dst}")

                old = FileRecord.from_row(rows[0])
                moved = old.relocated(dst, new_name)

                require_ok(await self._db.aexecute("DELETE FROM files WHERE id = ?", (old.id,)), "Old record delete")
                require_ok(await self._db.aexecute(UPSERT_SQL, moved.to_params()), "New record insert")

                # A user may already hold a favorite on the new id; the leftover old row then goes.
                require_ok(
                    await self._db.aexecute(
                        "UPDATE OR IGNORE favorites SET item_id = ? WHERE item_type = 'file' AND item_id IN (?, ?)",
                        (moved.id, old.id, old.path),
                    ),
                    "Favorite repoint",
                )
                require_ok(
                    await self._db.aexecute(
                        "DELETE FROM favorites WHERE item_type = 'file' AND item_id IN (?, ?)",
                        (old.id, old.path),
                    ),
                    "Favorite cleanup",
                )

                require_ok(
                    await self._db.aexecute("DELETE FROM thumbnails WHERE file_id = ?", (moved.id,)),
                    "Stale thumbnail cleanup",
                )
                require_ok(
                    await self._db.aexecute(
                        "UPDATE thumbnails SET file_id = ? WHERE file_id = ?",
                        (moved.id, old.id),
                    ),
                    "Thumbnail repoint",
                )
                await self._store.invalidate_folder_cache()
        except CatalogError as exc:
            logger.warning("Rename %s -> %s rolled back: %s", src, dst, exc)
            return Result.Err(exc.code, str(exc))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Rename failed")
        logger.info("Renamed %s -> %s", src, dst)
        return Result.Ok({"ok": True, "id": moved.id, "oldId": old.id, "path": dst, "name": moved.name})

    async def delete(self, path: str, file_id: str | None = None) -> Result[int]:
        """Hard delete; favorites and thumbnail metadata are removed, not tombstoned."""
        return await self._store.delete_by_path(path, file_id)

    async def delete_folder(self, path: str) -> Result[int]:
        return await self._store.delete_by_folder_prefix(path)
