"""
Favorites: per-user marks on files (keyed by file id) and folders (keyed by path).

Favorites are weak references. Views join them against the file table, so a
favorite whose file disappeared is silently left out.
"""
from __future__ import annotations

from dataclasses import replace

from ...shared import ErrorCode, ItemType, Result, TransactionError, get_logger, ms
from ...utils import normalize_catalog_path
from .models import FileQuery, FileRecord
from .query import QueryEngine
from .store import require_ok

logger = get_logger(__name__)


def _validate(user_id: str | None, item_id: str | None, item_type: str | None) -> Result[tuple[str, str, str]]:
    if not user_id or not str(user_id).strip():
        return Result.Err(ErrorCode.INVALID_INPUT, "Missing user id")
    if not item_id or not str(item_id).strip():
        return Result.Err(ErrorCode.INVALID_INPUT, "Missing item id")
    try:
        kind = ItemType(str(item_type or "").strip().lower())
    except ValueError:
        return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid item type: {item_type!r}")
    item = normalize_catalog_path(item_id) if kind is ItemType.FOLDER else str(item_id).strip()
    return Result.Ok((str(user_id).strip(), item, kind.value))


class Favorites:
    def __init__(self, db, query_engine: QueryEngine):
        self._db = db
        self._query = query_engine

    async def is_favorite(self, user_id: str, item_id: str, item_type: str) -> Result[bool]:
        valid = _validate(user_id, item_id, item_type)
        if not valid.ok:
            return Result.Err(valid.code, valid.error or "Invalid favorite")
        uid, item, kind = valid.data
        res = await self._db.aquery(
            "SELECT 1 FROM favorites WHERE user_id = ? AND item_id = ? AND item_type = ?",
            (uid, item, kind),
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Favorite lookup failed")
        return Result.Ok(bool(res.data))

    async def _write(self, user_id: str, item_id: str, item_type: str, target: bool | None) -> Result[bool]:
        """Set (True), clear (False) or flip (None) a favorite; returns the new state."""
        valid = _validate(user_id, item_id, item_type)
        if not valid.ok:
            return Result.Err(valid.code, valid.error or "Invalid favorite")
        uid, item, kind = valid.data
        try:
            async with self._db.atransaction(persist=True) as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or "Favorite update failed")
                rows = require_ok(
                    await self._db.aquery(
                        "SELECT id FROM favorites WHERE user_id = ? AND item_id = ? AND item_type = ?",
                        (uid, item, kind),
                    ),
                    "Favorite lookup",
                )
                exists = bool(rows)
                state = (not exists) if target is None else target
                if state and not exists:
                    require_ok(
                        await self._db.aexecute(
                            "INSERT INTO favorites (user_id, item_id, item_type, created_at) VALUES (?, ?, ?, ?)",
                            (uid, item, kind, ms()),
                        ),
                        "Favorite insert",
                    )
                elif not state and exists:
                    require_ok(
                        await self._db.aexecute(
                            "DELETE FROM favorites WHERE user_id = ? AND item_id = ? AND item_type = ?",
                            (uid, item, kind),
                        ),
                        "Favorite delete",
                    )
        except TransactionError as exc:
            logger.warning("Favorite update rolled back: %s", exc)
            return Result.Err(exc.code, str(exc))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Favorite update failed")
        return Result.Ok(state)

    async def toggle(self, user_id: str, item_id: str, item_type: str) -> Result[bool]:
        """Flip a favorite in one write transaction; returns the new state."""
        return await self._write(user_id, item_id, item_type, None)

    async def add(self, user_id: str, item_id: str, item_type: str) -> Result[bool]:
        return await self._write(user_id, item_id, item_type, True)

    async def remove(self, user_id: str, item_id: str, item_type: str) -> Result[bool]:
        return await self._write(user_id, item_id, item_type, False)

    async def list_favorite_ids(self, user_id: str) -> Result[dict[str, list[str]]]:
        """
        Favorite ids of a user: `{files: [...], folders: [...]}`.

        File favorites still keyed by path resolve to the id of that file.
        """
        if not user_id:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing user id")
        res = await self._db.aquery(
            """
            SELECT fav.item_type AS item_type,
                   COALESCE(
                       CASE WHEN fav.item_type = 'file'
                            THEN (SELECT f.id FROM files f WHERE f.path = fav.item_id)
                       END,
                       fav.item_id
                   ) AS item_id
            FROM favorites fav
            WHERE fav.user_id = ?
            ORDER BY fav.created_at, fav.id
            """,
            (user_id,),
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Favorite lookup failed")
        files: list[str] = []
        folders: list[str] = []
        for row in res.data or []:
            bucket = files if row["item_type"] == ItemType.FILE.value else folders
            if row["item_id"] not in bucket:
                bucket.append(row["item_id"])
        return Result.Ok({"files": files, "folders": folders})

    async def query_favorite_files(self, user_id: str, query: FileQuery | None = None) -> Result[list[FileRecord]]:
        """Favorite files of a user with the same filters and paging as `query_files`."""
        base = query or FileQuery()
        return await self._query.query_files(replace(base, user_id=user_id, favorites_only=True))

    async def count_favorite_files(self, user_id: str, query: FileQuery | None = None) -> Result[int]:
        base = query or FileQuery()
        return await self._query.count_files(replace(base, user_id=user_id, favorites_only=True))
