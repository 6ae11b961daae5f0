"""
Catalog query engine.

Every file query goes through `build_file_filters`, which turns a `FileQuery`
into parameterized SQL. `query_files`, `count_files`, the favorites views and
the statistics all reuse it, so the visibility boundary (`allowed_paths`) is
applied identically everywhere:

- `None`: unrestricted caller.
- `[]`: deny all.
- `[p1, p2, ...]`: a file is visible iff its path or folder equals or is nested
  under one of the roots. The clause is ANDed with every other filter,
  random sampling included.
"""
from __future__ import annotations

import posixpath
from typing import Any

from ...config import QUERY_DEFAULT_LIMIT, QUERY_MAX_LIMIT
from ...shared import ErrorCode, MediaType, Result, TransactionError, get_logger, ms
from ...adapters.db.schema import FOLDER_CACHE_KEY
from ...utils import escape_like, normalize_catalog_path
from .models import ROOT_ALIASES, FileQuery, FileRecord, FolderAggregate

logger = get_logger(__name__)

_FAVORITE_MATCH = (
    "SELECT 1 FROM favorites fav WHERE fav.user_id = ? AND fav.item_type = 'file' "
    "AND (fav.item_id = {alias}.id OR fav.item_id = {alias}.path)"
)


def _prefix_pattern(folder: str) -> str:
    """LIKE pattern matching everything strictly below `folder`."""
    base = folder.rstrip("/")
    return f"{escape_like(base)}/%"


def _in_placeholders(values: list[str]) -> str:
    return ",".join("?" for _ in values)


def allowed_paths_clause(allowed_paths: list[str] | None, alias: str = "f") -> tuple[str, list[Any]]:
    """
    Visibility clause for a list of allowed roots.

    Returns ("", []) for unrestricted callers and an always-false clause for
    an empty list.
    """
    if allowed_paths is None:
        return "", []
    roots = [normalize_catalog_path(p) for p in allowed_paths if str(p or "").strip()]
    if not roots:
        return "AND 1=0", []
    parts: list[str] = []
    params: list[Any] = []
    for root in roots:
        pattern = _prefix_pattern(root)
        parts.append(
            f"({alias}.path = ? OR {alias}.path LIKE ? ESCAPE '\\' "
            f"OR {alias}.folder_path = ? OR {alias}.folder_path LIKE ? ESCAPE '\\')"
        )
        params.extend([root, pattern, root, pattern])
    return f"AND ({' OR '.join(parts)})", params


def folder_scope_clause(folder_path: str, recursive: bool, alias: str = "f") -> tuple[str, list[Any]]:
    folder = normalize_catalog_path(folder_path)
    if not recursive:
        return f"AND {alias}.folder_path = ?", [folder]
    return (
        f"AND ({alias}.folder_path = ? OR {alias}.folder_path LIKE ? ESCAPE '\\')",
        [folder, _prefix_pattern(folder)],
    )


def build_file_filters(query: FileQuery, alias: str = "f") -> tuple[list[str], list[Any]]:
    """
    Translate a `FileQuery` into WHERE fragments.

    Returns:
        (clauses, params); each clause starts with "AND".
    """
    clauses: list[str] = []
    params: list[Any] = []

    if query.folder_path is not None:
        clause, clause_params = folder_scope_clause(query.folder_path, query.recursive, alias)
        clauses.append(clause)
        params.extend(clause_params)

    include = [m for m in query.media_type if m]
    exclude = [m for m in query.exclude_media_type if m]
    if include:
        clauses.append(f"AND {alias}.media_type IN ({_in_placeholders(include)})")
        params.extend(include)
    if exclude:
        # Applied after the include list, so an excluded type never matches.
        clauses.append(f"AND {alias}.media_type NOT IN ({_in_placeholders(exclude)})")
        params.extend(exclude)

    if query.source_id:
        clauses.append(f"AND {alias}.source_id = ?")
        params.append(query.source_id)

    if query.favorites_only:
        if not query.user_id:
            clauses.append("AND 1=0")
        else:
            clauses.append(f"AND EXISTS ({_FAVORITE_MATCH.format(alias=alias)})")
            params.append(query.user_id)

    clause, clause_params = allowed_paths_clause(query.allowed_paths, alias)
    if clause:
        clauses.append(clause)
        params.extend(clause_params)

    return clauses, params


def clamp_paging(limit: int | None, offset: int | None) -> tuple[int, int]:
    if limit is None:
        limit = QUERY_DEFAULT_LIMIT
    try:
        lim = max(0, min(int(limit), QUERY_MAX_LIMIT))
    except (TypeError, ValueError):
        lim = QUERY_DEFAULT_LIMIT
    try:
        off = max(0, int(offset or 0))
    except (TypeError, ValueError):
        off = 0
    return lim, off


def is_root_folder(path: str | None) -> bool:
    return path is None or str(path).strip().lower() in ROOT_ALIASES


def _self_and_ancestors(folder: str):
    """Yield `folder` then each parent, stopping before the filesystem root."""
    while folder and folder != "/":
        yield folder
        parent = posixpath.dirname(folder)
        if parent == folder:
            return
        folder = parent


def _top_most(folders: set[str]) -> list[str]:
    """Folders of the set that have no ancestor in the set."""
    return sorted(
        p for p in folders
        if not any(anc in folders for anc in _self_and_ancestors(posixpath.dirname(p)))
    )


class QueryEngine:
    """Read side of the catalog."""

    def __init__(self, db, library_roots: list[str] | None = None):
        self._db = db
        self._roots = [normalize_catalog_path(r) for r in (library_roots or []) if str(r or "").strip()]

    @property
    def library_roots(self) -> list[str]:
        return list(self._roots)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def query_files(self, query: FileQuery) -> Result[list[FileRecord]]:
        clauses, params = build_file_filters(query, "f")
        limit, offset = clamp_paging(query.limit, query.offset)

        if query.user_id:
            favorite_col = f"EXISTS ({_FAVORITE_MATCH.format(alias='f')}) AS is_favorite"
            select_params: list[Any] = [query.user_id]
        else:
            favorite_col = "0 AS is_favorite"
            select_params = []

        order = "ORDER BY RANDOM()" if query.random else "ORDER BY f.last_modified DESC, f.path ASC"
        sql = f"""
            SELECT f.*, {favorite_col}
            FROM files f
            WHERE 1=1 {' '.join(clauses)}
            {order}
            LIMIT ? OFFSET ?
        """
        res = await self._db.aquery(sql, tuple(select_params + params + [limit, offset]))
        if not res.ok:
            logger.error("File query failed: %s", res.error)
            return Result.Err(ErrorCode.QUERY_FAILED, res.error or "File query failed")
        return Result.Ok([FileRecord.from_row(row) for row in res.data or []])

    async def count_files(self, query: FileQuery) -> Result[int]:
        clauses, params = build_file_filters(query, "f")
        res = await self._db.aquery(
            f"SELECT COUNT(*) AS total FROM files f WHERE 1=1 {' '.join(clauses)}",
            tuple(params),
        )
        if not res.ok:
            logger.error("File count failed: %s", res.error)
            return Result.Err(ErrorCode.QUERY_FAILED, res.error or "File count failed")
        rows = res.data or []
        return Result.Ok(int(rows[0]["total"] or 0) if rows else 0)

    async def get_stats(self, allowed_paths: list[str] | None = None) -> Result[dict]:
        clause, params = allowed_paths_clause(allowed_paths, "f")
        res = await self._db.aquery(
            f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN f.media_type = ? THEN 1 ELSE 0 END), 0) AS images,
                COALESCE(SUM(CASE WHEN f.media_type = ? THEN 1 ELSE 0 END), 0) AS videos,
                COALESCE(SUM(CASE WHEN f.media_type = ? THEN 1 ELSE 0 END), 0) AS audio
            FROM files f
            WHERE 1=1 {clause}
            """,
            (MediaType.IMAGE.value, MediaType.VIDEO.value, MediaType.AUDIO.value, *params),
        )
        if not res.ok:
            return Result.Err(ErrorCode.QUERY_FAILED, res.error or "Stats query failed")
        row = (res.data or [{}])[0]
        return Result.Ok(
            {
                "totalFiles": int(row.get("total") or 0),
                "totalImages": int(row.get("images") or 0),
                "totalVideos": int(row.get("videos") or 0),
                "totalAudio": int(row.get("audio") or 0),
                "dbSizeBytes": await self._db.asize_bytes(),
            }
        )

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def _folder_groups(self, scope_clause: str, scope_params: list[Any], allowed_paths: list[str] | None):
        """
        Per-folder counts for visible files.

        SQLite returns bare columns from the row holding MAX(), so `cover_file_id`
        is the most recently modified file of each group.
        """
        clause, params = allowed_paths_clause(allowed_paths, "f")
        return await self._db.aquery(
            f"""
            SELECT f.folder_path AS folder_path,
                   COUNT(*) AS media_count,
                   MAX(f.last_modified) AS latest,
                   f.id AS cover_file_id
            FROM files f
            WHERE 1=1 {scope_clause} {clause}
            GROUP BY f.folder_path
            """,
            tuple(scope_params + params),
        )

    @staticmethod
    def _rollup(rows: list[dict], stop_at: set[str] | None = None) -> dict[str, FolderAggregate]:
        """Fold per-folder groups into recursive aggregates for every ancestor folder."""
        aggregates: dict[str, FolderAggregate] = {}
        for row in rows:
            for folder in _self_and_ancestors(normalize_catalog_path(row["folder_path"])):
                agg = aggregates.get(folder)
                if agg is None:
                    agg = aggregates[folder] = FolderAggregate(path=folder)
                agg.absorb(row["media_count"], row["latest"], row["cover_file_id"])
                if stop_at is not None and folder in stop_at:
                    break
        return aggregates

    async def _favorite_folder_paths(self, user_id: str | None) -> set[str]:
        if not user_id:
            return set()
        res = await self._db.aquery(
            "SELECT item_id FROM favorites WHERE user_id = ? AND item_type = 'folder'",
            (user_id,),
        )
        if not res.ok:
            return set()
        return {normalize_catalog_path(row["item_id"]) for row in res.data or []}

    async def _cache_valid(self) -> bool:
        return (await self._db.aget_meta(FOLDER_CACHE_KEY)) == "1"

    async def _children_from_cache(self, parent: str | None) -> list[FolderAggregate] | None:
        if parent is None:
            if not self._roots:
                return None
            res = await self._db.aquery(
                f"SELECT * FROM folders WHERE path IN ({_in_placeholders(self._roots)})",
                tuple(self._roots),
            )
        else:
            res = await self._db.aquery("SELECT * FROM folders WHERE parent_path = ?", (parent,))
        if not res.ok:
            return None
        by_path = {
            row["path"]: FolderAggregate(
                path=row["path"],
                name=row.get("name") or "",
                parent_path=row.get("parent_path"),
                media_count=int(row.get("media_count") or 0),
                cover_file_id=row.get("cover_file_id"),
            )
            for row in res.data or []
        }
        if parent is None:
            return [by_path.get(root) or FolderAggregate(path=root) for root in self._roots]
        return sorted(by_path.values(), key=lambda a: a.name.lower())

    async def _children_live(self, parent: str | None, allowed_paths: list[str] | None) -> Result[list[FolderAggregate]]:
        if parent is None and self._roots:
            parts = []
            scope_params: list[Any] = []
            for root in self._roots:
                parts.append("(f.folder_path = ? OR f.folder_path LIKE ? ESCAPE '\\')")
                scope_params.extend([root, _prefix_pattern(root)])
            scope = f"AND ({' OR '.join(parts)})"
        elif parent is None:
            scope, scope_params = "", []
        else:
            scope, scope_params = "AND f.folder_path LIKE ? ESCAPE '\\'", [_prefix_pattern(parent)]

        res = await self._folder_groups(scope, scope_params, allowed_paths)
        if not res.ok:
            return Result.Err(ErrorCode.QUERY_FAILED, res.error or "Folder query failed")
        rows = res.data or []

        if parent is None and self._roots:
            aggregates = self._rollup(rows, stop_at=set(self._roots))
            folders = [aggregates.get(root) or FolderAggregate(path=root) for root in self._roots]
        elif parent is None:
            # No configured roots: the top-most folders holding files.
            tops = _top_most({normalize_catalog_path(r["folder_path"]) for r in rows})
            aggregates = self._rollup(rows, stop_at=set(tops))
            folders = [aggregates[p] for p in tops if p in aggregates]
        else:
            aggregates = self._rollup(rows, stop_at=None)
            folders = sorted(
                (agg for path, agg in aggregates.items() if agg.parent_path == parent and path != parent),
                key=lambda a: a.name.lower(),
            )

        if allowed_paths is not None:
            folders = [f for f in folders if f.media_count > 0]
        return Result.Ok(folders)

    async def query_folders(
        self,
        parent_path: str | None = None,
        favorites_only: bool = False,
        user_id: str | None = None,
        allowed_paths: list[str] | None = None,
    ) -> Result[list[FolderAggregate]]:
        """
        Direct child folders of `parent_path` with recursive media counts.

        The root level lists the configured library roots, or the top-most
        catalogued folders when none are configured. In favorites mode the
        user's favorite folders are listed instead. The `folders` cache is
        only read when valid and the caller is unrestricted.
        """
        parent = None if is_root_folder(parent_path) else normalize_catalog_path(parent_path)
        favorite_paths = await self._favorite_folder_paths(user_id)

        if favorites_only:
            folders: list[FolderAggregate] = []
            for path in sorted(favorite_paths):
                res = await self._folder_groups(*folder_scope_clause(path, True), allowed_paths)
                if not res.ok:
                    return Result.Err(ErrorCode.QUERY_FAILED, res.error or "Folder query failed")
                agg = self._rollup(res.data or [], stop_at={path}).get(path) or FolderAggregate(path=path)
                if allowed_paths is not None and agg.media_count == 0:
                    continue
                folders.append(agg)
        else:
            cached = None
            if allowed_paths is None and await self._cache_valid():
                cached = await self._children_from_cache(parent)
            if cached is not None:
                folders = cached
            else:
                live = await self._children_live(parent, allowed_paths)
                if not live.ok:
                    return live
                folders = live.data or []

        for folder in folders:
            folder.is_favorite = folder.path in favorite_paths
        return Result.Ok(folders)

    async def rebuild_folder_cache(self) -> Result[int]:
        """Recompute the `folders` table from the current file set."""
        try:
            async with self._db.atransaction() as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or "Folder cache rebuild failed")
                groups = await self._folder_groups("", [], None)
                if not groups.ok:
                    raise TransactionError(groups.error or "Folder grouping failed")
                aggregates = self._rollup(groups.data or [])
                stamp = ms()
                cleared = await self._db.aexecute("DELETE FROM folders")
                if not cleared.ok:
                    raise TransactionError(cleared.error or "Folder cache clear failed")
                written = await self._db.aexecutemany(
                    """
                    INSERT INTO folders (path, name, parent_path, media_count, cover_file_id, last_updated)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (a.path, a.name, a.parent_path, a.media_count, a.cover_file_id, stamp)
                        for a in aggregates.values()
                    ],
                )
                if not written.ok:
                    raise TransactionError(written.error or "Folder cache write failed")
                marked = await self._db.aset_meta(FOLDER_CACHE_KEY, "1")
                if not marked.ok:
                    raise TransactionError(marked.error or "Folder cache flag write failed")
        except TransactionError as exc:
            logger.error("Folder cache rebuild failed: %s", exc)
            return Result.Err(exc.code, str(exc))
        if not tx.ok:
            return Result.Err(tx.code, tx.error or "Folder cache rebuild failed")
        return Result.Ok(len(aggregates))
