"""
Catalog store: the only writer of file records.

Every mutation runs in one transaction, marks the folder cache stale inside
that transaction, and persists the snapshot afterwards unless the caller
passes `persist=False` to checkpoint on its own schedule.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ...adapters.db.schema import FOLDER_CACHE_KEY
from ...shared import ErrorCode, Result, TransactionError, get_logger, ms
from ...utils import escape_like, normalize_catalog_path
from .ids import derive_id
from .models import FileRecord
from .query import allowed_paths_clause

logger = get_logger(__name__)

UPSERT_SQL = """
INSERT INTO files (
    id, path, name, folder_path, size, type, media_type, last_modified, source_id,
    created_at, thumb_width, thumb_height, thumb_aspect_ratio
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(path) DO UPDATE SET
    name = excluded.name,
    size = excluded.size,
    last_modified = excluded.last_modified,
    thumb_width = COALESCE(excluded.thumb_width, files.thumb_width),
    thumb_height = COALESCE(excluded.thumb_height, files.thumb_height),
    thumb_aspect_ratio = COALESCE(excluded.thumb_aspect_ratio, files.thumb_aspect_ratio)
"""

DELETE_CHUNK = 500


def require_ok(result: Result[Any], action: str) -> Any:
    """Return `result.data` or raise TransactionError so the enclosing transaction rolls back."""
    if not result.ok:
        raise TransactionError(f"{action} failed: {result.error}")
    return result.data


def coerce_record(item: FileRecord | Mapping[str, Any], source_id: str | None = None) -> FileRecord:
    """
    Validate one incoming record.

    Raises:
        TransactionError: the record is malformed.
    """
    try:
        record = item if isinstance(item, FileRecord) else FileRecord.from_mapping(item, source_id)
        record.validate()
    except (KeyError, TypeError, ValueError) as exc:
        raise TransactionError(f"Malformed file record: {exc}") from exc
    return record


def _upsert_params(record: FileRecord) -> tuple:
    params = list(record.to_params())
    if params[9] is None:
        params[9] = ms()
    return tuple(params)


class CatalogStore:
    """CRUD primitives over the file record table."""

    def __init__(self, db):
        self._db = db

    @property
    def db(self):
        return self._db

    async def invalidate_folder_cache(self) -> None:
        require_ok(await self._db.aset_meta(FOLDER_CACHE_KEY, "0"), "Folder cache invalidation")

    async def _run(self, action: str, body, *, persist: bool) -> Result[Any]:
        """Run `body()` inside one write transaction, mapping failures to Err."""
        try:
            async with self._db.atransaction(persist=persist) as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or f"{action} failed")
                data = await body()
        except TransactionError as exc:
            logger.warning("%s rolled back: %s", action, exc)
            return Result.Err(exc.code, str(exc))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or f"{action} failed")
        meta = {"persist_error": tx.meta["persist_error"]} if "persist_error" in tx.meta else {}
        return Result.Ok(data, **meta)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, record: FileRecord | Mapping[str, Any], *, persist: bool = True) -> Result[str]:
        """Insert a record or update the mutable fields of the row with the same path."""
        async def _body() -> str:
            rec = coerce_record(record)
            require_ok(await self._db.aexecute(UPSERT_SQL, _upsert_params(rec)), f"Upsert of {rec.path}")
            await self.invalidate_folder_cache()
            return rec.id

        return await self._run("Upsert", _body, persist=persist)

    async def batch_insert(
        self,
        records: Iterable[FileRecord | Mapping[str, Any]],
        *,
        persist: bool = True,
        source_id: str | None = None,
    ) -> Result[int]:
        """
        Upsert many records atomically.

        A malformed record or failing statement rolls back the whole batch;
        none of the records become visible.
        """
        items = list(records)
        if not items:
            return Result.Ok(0)

        async def _body() -> int:
            params = [_upsert_params(coerce_record(item, source_id)) for item in items]
            require_ok(await self._db.aexecutemany(UPSERT_SQL, params), "Batch upsert")
            await self.invalidate_folder_cache()
            return len(params)

        return await self._run("Batch insert", _body, persist=persist)

    async def _cascade_file_rows(self, pairs: list[tuple[str, str]]) -> int:
        """Delete files by (id, path) plus their favorites and thumbnail metadata."""
        deleted = 0
        for start in range(0, len(pairs), DELETE_CHUNK):
            chunk = pairs[start:start + DELETE_CHUNK]
            deleted += int(
                require_ok(
                    await self._db.aexecutemany("DELETE FROM files WHERE path = ? OR id = ?", [(p, i) for i, p in chunk]),
                    "File delete",
                )
                or 0
            )
            require_ok(
                await self._db.aexecutemany(
                    "DELETE FROM favorites WHERE item_type = 'file' AND item_id IN (?, ?)",
                    chunk,
                ),
                "Favorite cascade",
            )
            require_ok(
                await self._db.aexecutemany(
                    "DELETE FROM thumbnails WHERE file_id = ?",
                    [(i,) for i, _ in chunk],
                ),
                "Thumbnail cascade",
            )
        return deleted

    async def delete_by_path(self, path: str, file_id: str | None = None, *, persist: bool = True) -> Result[int]:
        """
        Hard-delete one record with its favorites and thumbnail metadata.

        Deleting a path that is not catalogued is a no-op returning 0.
        """
        norm = normalize_catalog_path(path)
        if not norm and not file_id:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing path")

        async def _body() -> int:
            pairs = {(derive_id(norm), norm)} if norm else set()
            if file_id:
                rows = require_ok(
                    await self._db.aquery("SELECT id, path FROM files WHERE id = ?", (file_id,)),
                    "File lookup",
                )
                pairs.update((r["id"], r["path"]) for r in rows or [])
                if not rows:
                    pairs.add((file_id, norm or file_id))
            deleted = await self._cascade_file_rows(sorted(pairs))
            if deleted:
                await self.invalidate_folder_cache()
            return deleted

        return await self._run("Delete", _body, persist=persist)

    async def delete_files_batch(self, paths: Iterable[str], *, persist: bool = True) -> Result[int]:
        """Delete many records atomically (used by sync for removed paths)."""
        norm_paths = sorted({normalize_catalog_path(p) for p in paths if p})
        if not norm_paths:
            return Result.Ok(0)

        async def _body() -> int:
            deleted = await self._cascade_file_rows([(derive_id(p), p) for p in norm_paths])
            if deleted:
                await self.invalidate_folder_cache()
            return deleted

        return await self._run("Batch delete", _body, persist=persist)

    async def delete_by_folder_prefix(self, folder_path: str, *, persist: bool = True) -> Result[int]:
        """
        Delete every record whose folder equals `folder_path` or is nested below it.

        Favorites of those files, their thumbnail metadata, and folder
        favorites for the folder and its descendants go with them.
        """
        folder = normalize_catalog_path(folder_path)
        if not folder or folder == "/":
            return Result.Err(ErrorCode.INVALID_INPUT, "Refusing to delete the filesystem root")
        pattern = f"{escape_like(folder)}/%"
        scope = "(folder_path = ? OR folder_path LIKE ? ESCAPE '\\')"
        scope_params = (folder, pattern)

        async def _body() -> int:
            require_ok(
                await self._db.aexecute(
                    f"""
                    DELETE FROM favorites
                    WHERE item_type = 'file'
                      AND (item_id IN (SELECT id FROM files WHERE {scope})
                           OR item_id IN (SELECT path FROM files WHERE {scope}))
                    """,
                    scope_params + scope_params,
                ),
                "Favorite cascade",
            )
            require_ok(
                await self._db.aexecute(
                    f"DELETE FROM thumbnails WHERE file_id IN (SELECT id FROM files WHERE {scope})",
                    scope_params,
                ),
                "Thumbnail cascade",
            )
            require_ok(
                await self._db.aexecute(
                    "DELETE FROM favorites WHERE item_type = 'folder' AND (item_id = ? OR item_id LIKE ? ESCAPE '\\')",
                    scope_params,
                ),
                "Folder favorite cascade",
            )
            deleted = require_ok(
                await self._db.aexecute(f"DELETE FROM files WHERE {scope}", scope_params),
                "Folder delete",
            )
            await self.invalidate_folder_cache()
            return int(deleted or 0)

        return await self._run("Folder delete", _body, persist=persist)

    async def clear_all(self, *, persist: bool = True) -> Result[int]:
        """Truncate the file table (full rescan reset)."""
        async def _body() -> int:
            deleted = require_ok(await self._db.aexecute("DELETE FROM files"), "Clear files")
            require_ok(await self._db.aexecute("DELETE FROM folders"), "Clear folder cache")
            await self.invalidate_folder_cache()
            return int(deleted or 0)

        return await self._run("Clear", _body, persist=persist)

    async def set_thumbnail(
        self,
        file_id: str,
        thumbnail_path: str,
        width: int | None = None,
        height: int | None = None,
        *,
        persist: bool = True,
    ) -> Result[bool]:
        """Record a thumbnail produced by the external generator."""
        if not file_id or not thumbnail_path:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing file id or thumbnail path")

        async def _body() -> bool:
            exists = require_ok(await self._db.aquery("SELECT 1 FROM files WHERE id = ?", (file_id,)), "File lookup")
            if not exists:
                return False
            require_ok(
                await self._db.aexecute(
                    "INSERT OR REPLACE INTO thumbnails (file_id, thumbnail_path, generated_at) VALUES (?, ?, ?)",
                    (file_id, thumbnail_path, ms()),
                ),
                "Thumbnail write",
            )
            if width and height:
                require_ok(
                    await self._db.aexecute(
                        "UPDATE files SET thumb_width = ?, thumb_height = ?, thumb_aspect_ratio = ? WHERE id = ?",
                        (int(width), int(height), float(width) / float(height), file_id),
                    ),
                    "Thumbnail dimensions",
                )
            return True

        res = await self._run("Set thumbnail", _body, persist=persist)
        if res.ok and not res.data:
            return Result.Err(ErrorCode.NOT_FOUND, "File is not catalogued")
        return res

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_path(self, path: str) -> Result[FileRecord | None]:
        res = await self._db.aquery("SELECT * FROM files WHERE path = ?", (normalize_catalog_path(path),))
        if not res.ok:
            return Result.Err(res.code, res.error or "Lookup failed")
        rows = res.data or []
        return Result.Ok(FileRecord.from_row(rows[0]) if rows else None)

    async def get_by_id(self, file_id: str) -> Result[FileRecord | None]:
        res = await self._db.aquery("SELECT * FROM files WHERE id = ?", (file_id,))
        if not res.ok:
            return Result.Err(res.code, res.error or "Lookup failed")
        rows = res.data or []
        return Result.Ok(FileRecord.from_row(rows[0]) if rows else None)

    async def get_thumbnail(self, file_id: str) -> Result[dict | None]:
        res = await self._db.aquery("SELECT * FROM thumbnails WHERE file_id = ?", (file_id,))
        if not res.ok:
            return Result.Err(res.code, res.error or "Lookup failed")
        rows = res.data or []
        return Result.Ok(rows[0] if rows else None)

    async def get_all_paths(self) -> Result[list[str]]:
        res = await self._db.aquery("SELECT path FROM files ORDER BY path")
        if not res.ok:
            return Result.Err(res.code, res.error or "Lookup failed")
        return Result.Ok([row["path"] for row in res.data or []])

    async def get_all_path_mtimes(self, roots: list[str] | None = None) -> Result[dict[str, int]]:
        """
        Stored `path -> lastModified` map, optionally limited to files under `roots`.

        An empty `roots` list yields an empty map.
        """
        clause, params = allowed_paths_clause(roots, "f")
        res = await self._db.aquery(f"SELECT f.path, f.last_modified FROM files f WHERE 1=1 {clause}", tuple(params))
        if not res.ok:
            return Result.Err(res.code, res.error or "Lookup failed")
        return Result.Ok({row["path"]: int(row["last_modified"] or 0) for row in res.data or []})
