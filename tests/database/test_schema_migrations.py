import base64
import sqlite3

import pytest

from lumina_backend.adapters.db import schema as schema_mod
from lumina_backend.adapters.db.sqlite import Sqlite
from lumina_backend.deps import build_services
from lumina_shared import SchemaError


def _legacy_id(path: str) -> str:
    return base64.b64encode(path.encode("utf-8")).decode("ascii")


def _write_legacy_snapshot(db_path, favorites):
    """A first-release catalog: no thumbnail dimensions, no folder parent links, path-keyed favorites."""
    conn = sqlite3.connect(str(db_path))
    try:
        conn.executescript(
            """
            CREATE TABLE metadata (key TEXT PRIMARY KEY, value TEXT NOT NULL);
            CREATE TABLE files (
                id TEXT PRIMARY KEY,
                path TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                folder_path TEXT NOT NULL,
                size INTEGER,
                type TEXT,
                media_type TEXT,
                last_modified INTEGER,
                source_id TEXT,
                created_at INTEGER
            );
            CREATE TABLE favorites (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                item_type TEXT NOT NULL,
                created_at INTEGER,
                UNIQUE(user_id, item_id, item_type)
            );
            CREATE TABLE folders (
                path TEXT PRIMARY KEY,
                media_count INTEGER DEFAULT 0,
                cover_file_id TEXT,
                last_updated INTEGER
            );
            """
        )
        for path in ("/lib/a/one.png", "/lib/a/two.mp4"):
            conn.execute(
                "INSERT INTO files (id, path, name, folder_path, size, type, media_type, last_modified, source_id)"
                " VALUES (?, ?, ?, ?, 1, NULL, ?, 100, 'local')",
                (_legacy_id(path), path, path.rsplit("/", 1)[1], "/lib/a", "image" if path.endswith("png") else "video"),
            )
        conn.executemany(
            "INSERT INTO favorites (user_id, item_id, item_type, created_at) VALUES (?, ?, ?, 1)",
            favorites,
        )
        conn.execute("INSERT INTO metadata (key, value) VALUES ('folder_cache_valid', '1')")
        conn.commit()
    finally:
        conn.close()


@pytest.mark.asyncio
async def test_fresh_schema_records_every_migration(memory_services):
    db = memory_services["db"]

    done = await schema_mod.applied_migrations(db)

    assert done == {m.id for m in schema_mod.MIGRATIONS}
    assert await db.aget_meta("schema_version") == str(schema_mod.CURRENT_SCHEMA_VERSION)


@pytest.mark.asyncio
async def test_ensure_schema_is_idempotent(memory_services):
    db = memory_services["db"]

    again = await schema_mod.ensure_schema(db)

    assert again.ok, again.error
    assert again.data["applied"] == []
    assert again.meta["failed"] == []


@pytest.mark.asyncio
async def test_legacy_snapshot_is_healed(tmp_path):
    db_path = tmp_path / "legacy.db"
    _write_legacy_snapshot(
        db_path,
        [
            ("alice", "/lib/a/one.png", "file"),
            ("alice", "/lib/a", "folder"),
        ],
    )

    res = await build_services(str(db_path), library_roots=[])
    assert res.ok, res.error
    db = res.data["db"]
    try:
        file_cols = (await db.atable_columns("files")).data
        folder_cols = (await db.atable_columns("folders")).data
        assert {"thumb_width", "thumb_height", "thumb_aspect_ratio"} <= set(file_cols)
        assert {"name", "parent_path"} <= set(folder_cols)
        # The old folder cache has no parent links and must not be trusted.
        assert await db.aget_meta(schema_mod.FOLDER_CACHE_KEY) == "0"

        favs = await db.aquery("SELECT item_id, item_type FROM favorites WHERE user_id = 'alice' ORDER BY item_type")
        assert favs.data == [
            {"item_id": _legacy_id("/lib/a/one.png"), "item_type": "file"},
            {"item_id": "/lib/a", "item_type": "folder"},
        ]
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_favorites_migration_drops_duplicates(tmp_path):
    db_path = tmp_path / "legacy.db"
    file_id = _legacy_id("/lib/a/one.png")
    _write_legacy_snapshot(
        db_path,
        [
            ("alice", "/lib/a/one.png", "file"),
            ("alice", file_id, "file"),
            ("bob", "/lib/a/missing.png", "file"),
        ],
    )

    res = await build_services(str(db_path), library_roots=[])
    assert res.ok, res.error
    db = res.data["db"]
    try:
        alice = await db.aquery("SELECT item_id FROM favorites WHERE user_id = 'alice'")
        assert [r["item_id"] for r in alice.data] == [file_id]
        # A path with no catalogued file stays untouched.
        bob = await db.aquery("SELECT item_id FROM favorites WHERE user_id = 'bob'")
        assert [r["item_id"] for r in bob.data] == ["/lib/a/missing.png"]
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_failed_migration_is_logged_and_retried():
    db = Sqlite(None)
    await db.aopen()
    try:
        tables = await db.aexecutescript(schema_mod.SCHEMA_TABLES)
        assert tables.ok

        calls = []

        async def _broken(_db):
            calls.append("broken")
            raise SchemaError("ALTER failed")

        async def _fine(_db):
            calls.append("fine")

        migrations = (
            schema_mod.Migration("9001_broken", "always fails", _broken),
            schema_mod.Migration("9002_fine", "always works", _fine),
        )

        applied, failed = await schema_mod.apply_migrations(db, migrations)
        assert applied == ["9002_fine"]
        assert failed == ["9001_broken"]

        applied, failed = await schema_mod.apply_migrations(db, migrations)
        assert applied == []
        assert failed == ["9001_broken"]
        assert calls == ["broken", "fine", "broken"]
    finally:
        await db.aclose()


@pytest.mark.asyncio
async def test_table_has_column_rejects_unsafe_identifiers(memory_services):
    db = memory_services["db"]

    assert await schema_mod.table_has_column(db, "files", "path")
    assert not await schema_mod.table_has_column(db, "files; DROP TABLE files", "path")
    assert not await schema_mod.table_has_column(db, "files", "nope")
