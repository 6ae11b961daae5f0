"""
Catalog schema and migrations.

`ensure_schema` is idempotent and runs on every startup:
1. base tables (`CREATE TABLE IF NOT EXISTS`),
2. ordered, versioned migrations, each recorded in `schema_migrations` once applied,
3. indexes,
4. the schema version marker.

A failed migration raises `SchemaError` internally. It is logged, left
unrecorded so the next startup retries it, and never aborts startup.
"""
from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ...shared import ErrorCode, Result, SchemaError, get_logger, log_success, ms

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 3
# Schema version history:
# 1: files/favorites/thumbnails/folders as written by the first releases
# 2: thumbnail dimensions on files, parent_path/name on the folder cache
# 3: favorites keyed by file id instead of path

FOLDER_CACHE_KEY = "folder_cache_valid"

SCHEMA_TABLES = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_migrations (
    id TEXT PRIMARY KEY,
    applied_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    folder_path TEXT NOT NULL,
    size INTEGER,
    type TEXT,  -- MIME type
    media_type TEXT,  -- image, video, audio
    last_modified INTEGER,  -- epoch milliseconds
    source_id TEXT,
    created_at INTEGER,
    thumb_width INTEGER,
    thumb_height INTEGER,
    thumb_aspect_ratio REAL
);

CREATE TABLE IF NOT EXISTS thumbnails (
    file_id TEXT PRIMARY KEY,
    thumbnail_path TEXT NOT NULL,
    generated_at INTEGER
);

CREATE TABLE IF NOT EXISTS favorites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    item_type TEXT NOT NULL,  -- file, folder
    created_at INTEGER,
    UNIQUE(user_id, item_id, item_type)
);

-- Derived folder aggregates; rebuilt from files, never authoritative
CREATE TABLE IF NOT EXISTS folders (
    path TEXT PRIMARY KEY,
    name TEXT,
    parent_path TEXT,
    media_count INTEGER DEFAULT 0,
    cover_file_id TEXT,
    last_updated INTEGER
);
"""

INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_folder_path ON files(folder_path)",
    "CREATE INDEX IF NOT EXISTS idx_media_type ON files(media_type)",
    "CREATE INDEX IF NOT EXISTS idx_source_id ON files(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_last_modified ON files(last_modified DESC)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_user ON favorites(user_id, item_type)",
    "CREATE INDEX IF NOT EXISTS idx_folders_parent ON folders(parent_path)",
)

_SAFE_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _is_safe_identifier(value: str) -> bool:
    return bool(value and isinstance(value, str) and _SAFE_IDENT_RE.match(value))


async def table_has_column(db, table_name: str, column_name: str) -> bool:
    if not _is_safe_identifier(table_name) or not _is_safe_identifier(column_name):
        logger.warning("Invalid identifier in table_has_column: %s.%s", table_name, column_name)
        return False
    columns = await db.atable_columns(table_name)
    if not columns.ok:
        logger.warning("Unable to determine columns for %s: %s", table_name, columns.error)
        return False
    return column_name in (columns.data or [])


async def _ensure_column(db, table_name: str, column_name: str, definition: str) -> None:
    """Add `column_name` when live table metadata shows it missing. Raises SchemaError."""
    if not _is_safe_identifier(table_name) or not _is_safe_identifier(column_name):
        raise SchemaError(f"Invalid identifier: {table_name}.{column_name}")
    columns = await db.atable_columns(table_name)
    if not columns.ok:
        raise SchemaError(f"Unable to inspect {table_name}: {columns.error}")
    if column_name in (columns.data or []):
        return
    logger.info("Adding missing column %s.%s", table_name, column_name)
    res = await db.aexecute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {definition}")
    if not res.ok:
        raise SchemaError(f"ALTER TABLE {table_name} ADD COLUMN {column_name} failed: {res.error}")


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Migration:
    id: str
    description: str
    apply: Callable[..., Awaitable[None]]


async def _migrate_thumb_dimensions(db) -> None:
    for column, definition in (
        ("thumb_width", "INTEGER"),
        ("thumb_height", "INTEGER"),
        ("thumb_aspect_ratio", "REAL"),
    ):
        await _ensure_column(db, "files", column, definition)


async def _migrate_folder_parent_path(db) -> None:
    await _ensure_column(db, "folders", "name", "TEXT")
    await _ensure_column(db, "folders", "parent_path", "TEXT")
    # Old caches were computed without parent links; force a rebuild.
    res = await db.aset_meta(FOLDER_CACHE_KEY, "0")
    if not res.ok:
        raise SchemaError(f"Unable to invalidate folder cache: {res.error}")


async def _migrate_favorites_path_to_id(db) -> None:
    """Rewrite file favorites stored by path to the id of the file at that path."""
    async with db.atransaction() as tx:
        if not tx.ok:
            raise SchemaError(f"Favorites migration could not start: {tx.error}")
        repoint = await db.aexecute(
            """
            UPDATE OR IGNORE favorites
            SET item_id = (SELECT f.id FROM files f WHERE f.path = favorites.item_id)
            WHERE item_type = 'file'
              AND item_id NOT IN (SELECT id FROM files)
              AND item_id IN (SELECT path FROM files)
            """
        )
        if not repoint.ok:
            raise SchemaError(f"Favorites migration failed: {repoint.error}")
        # Rows left behind duplicate a favorite the user already holds by id.
        dupes = await db.aexecute(
            """
            DELETE FROM favorites
            WHERE item_type = 'file'
              AND item_id NOT IN (SELECT id FROM files)
              AND item_id IN (SELECT path FROM files)
            """
        )
        if not dupes.ok:
            raise SchemaError(f"Favorites migration cleanup failed: {dupes.error}")
    if not tx.ok:
        raise SchemaError(f"Favorites migration commit failed: {tx.error}")
    if repoint.data:
        logger.info("Migrated %s path-keyed favorites to file ids", repoint.data)


MIGRATIONS: tuple[Migration, ...] = (
    Migration("0001_thumb_dimensions", "thumbnail dimensions on files", _migrate_thumb_dimensions),
    Migration("0002_folder_parent_path", "parent links on the folder cache", _migrate_folder_parent_path),
    Migration("0003_favorites_path_to_id", "favorites keyed by file id", _migrate_favorites_path_to_id),
)


async def applied_migrations(db) -> set[str]:
    res = await db.aquery("SELECT id FROM schema_migrations")
    if not res.ok:
        return set()
    return {str(row["id"]) for row in res.data or []}


async def apply_migrations(db, migrations: tuple[Migration, ...] = MIGRATIONS) -> tuple[list[str], list[str]]:
    """
    Apply every migration not yet recorded, in order.

    Returns:
        (applied ids, failed ids)
    """
    done = await applied_migrations(db)
    applied: list[str] = []
    failed: list[str] = []
    for migration in migrations:
        if migration.id in done:
            continue
        try:
            await migration.apply(db)
        except SchemaError as exc:
            logger.error("Migration %s failed (%s): %s", migration.id, migration.description, exc)
            failed.append(migration.id)
            continue
        record = await db.aexecute(
            "INSERT OR REPLACE INTO schema_migrations (id, applied_at) VALUES (?, ?)",
            (migration.id, ms()),
        )
        if not record.ok:
            logger.error("Migration %s applied but not recorded: %s", migration.id, record.error)
            failed.append(migration.id)
            continue
        logger.info("Applied migration %s (%s)", migration.id, migration.description)
        applied.append(migration.id)
    return applied, failed


async def ensure_indexes(db) -> list[str]:
    failed: list[str] = []
    for statement in INDEXES:
        res = await db.aexecute(statement)
        if not res.ok:
            logger.error("Failed to ensure index (%s): %s", statement, res.error)
            failed.append(statement)
    return failed


async def ensure_schema(db) -> Result[dict]:
    """
    Create or repair the catalog schema.

    Only a failure to create the base tables is an error; failed migrations
    and indexes are reported in `meta` and retried on the next startup.
    """
    tables = await db.aexecutescript(SCHEMA_TABLES)
    if not tables.ok:
        logger.error("Failed to ensure base tables: %s", tables.error)
        return Result.Err(ErrorCode.SCHEMA_ERROR, f"Failed to create catalog tables: {tables.error}")

    applied, failed = await apply_migrations(db)
    failed_indexes = await ensure_indexes(db)

    version = await db.aset_meta("schema_version", CURRENT_SCHEMA_VERSION)
    if not version.ok:
        logger.warning("Failed to store schema version: %s", version.error)

    if failed or failed_indexes:
        logger.warning(
            "Schema ensured with degraded state (failed migrations=%s, failed indexes=%s)",
            failed,
            len(failed_indexes),
        )
    else:
        log_success(logger, f"Schema ensured (version {CURRENT_SCHEMA_VERSION})")
    return Result.Ok(
        {"version": CURRENT_SCHEMA_VERSION, "applied": applied},
        failed=failed,
        failed_indexes=failed_indexes,
    )
