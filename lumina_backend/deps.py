"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""

from __future__ import annotations

from .adapters.db.schema import ensure_schema
from .adapters.db.sqlite import Sqlite
from .config import LIBRARY_PATHS, PERSIST_ENABLED, SCAN_IOPS_LIMIT, SNAPSHOT_FILE, initialize_directories
from .features.catalog import CatalogService, CatalogStore, Favorites, QueryEngine, RenameManager
from .features.index import FileSystemWalker, SyncEngine
from .shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)


def _resolve_snapshot_path(snapshot_path: str | None, in_memory: bool) -> str | None:
    if in_memory:
        return None
    return snapshot_path if snapshot_path is not None else SNAPSHOT_FILE


async def _open_db_or_error(snapshot_path: str | None, persist_enabled: bool) -> Result[Sqlite]:
    logger.info("Opening catalog: %s", snapshot_path or "<memory>")
    db = Sqlite(snapshot_path, persist_enabled=persist_enabled)
    opened = await db.aopen()
    if not opened.ok:
        # A corrupt catalog must never be served.
        logger.critical("Catalog unavailable (%s): %s", opened.code, opened.error)
        return Result.Err(opened.code or ErrorCode.DB_ERROR, f"Failed to open catalog: {opened.error}")
    return Result.Ok(db)


async def _ensure_schema_or_error(db: Sqlite) -> Result[dict]:
    schema = await ensure_schema(db)
    if not schema.ok:
        logger.error("Schema setup failed: %s", schema.error)
        return Result.Err(schema.code or ErrorCode.SCHEMA_ERROR, f"Failed to initialize catalog: {schema.error}")
    persisted = await db.apersist()
    if not persisted.ok:
        logger.warning("Initial snapshot persist failed: %s", persisted.error)
    return schema


def _build_services_dict(db: Sqlite, library_roots: list[str]) -> dict:
    store = CatalogStore(db)
    query = QueryEngine(db, library_roots)
    favorites = Favorites(db, query)
    renamer = RenameManager(db, store)
    sync_engine = SyncEngine(db, store, query, FileSystemWalker(SCAN_IOPS_LIMIT))
    catalog = CatalogService(db, store, query, favorites, renamer, sync_engine)
    return {
        "db": db,
        "store": store,
        "query": query,
        "favorites": favorites,
        "renamer": renamer,
        "sync": sync_engine,
        "catalog": catalog,
    }


async def build_services(
    snapshot_path: str | None = None,
    *,
    in_memory: bool = False,
    library_roots: list[str] | None = None,
    persist_enabled: bool | None = None,
) -> Result[dict]:
    """
    Build all services with proper dependency injection.

    Args:
        snapshot_path: Snapshot file (defaults to LUMINA_SNAPSHOT_FILE)
        in_memory: Keep the catalog in memory only (no snapshot file)
        library_roots: Library roots (defaults to LUMINA_LIBRARY_PATHS)
        persist_enabled: Override LUMINA_PERSIST_ENABLED

    Returns:
        Result with the services dict, or Err when the catalog cannot be served.
    """
    path = _resolve_snapshot_path(snapshot_path, in_memory)
    if path is not None and snapshot_path is None:
        initialize_directories()

    db_res = await _open_db_or_error(path, PERSIST_ENABLED if persist_enabled is None else persist_enabled)
    if not db_res.ok:
        return Result.Err(db_res.code, db_res.error or "Failed to open catalog")
    db = db_res.data

    schema = await _ensure_schema_or_error(db)
    if not schema.ok:
        await db.aclose()
        return Result.Err(schema.code, schema.error or "Failed to initialize catalog")

    roots = list(LIBRARY_PATHS if library_roots is None else library_roots)
    services = _build_services_dict(db, roots)
    log_success(logger, f"Catalog services ready ({len(roots)} library roots)")
    return Result.Ok(services, schema=schema.data, schema_failed=schema.meta.get("failed", []))
