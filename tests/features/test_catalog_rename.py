import pytest

from lumina_backend.features.catalog.ids import derive_id
from lumina_shared import ErrorCode, Result

from catalog_factory import file_entry


@pytest.mark.asyncio
async def test_rename_moves_record_and_favorites(memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    renamer = memory_services["renamer"]

    old_id = (await store.upsert(file_entry("/lib/a/x.png", 42, thumbWidth=40, thumbHeight=20))).data
    await favorites.add("alice", old_id, "file")
    await favorites.add("bob", old_id, "file")

    res = await renamer.rename("/lib/a/x.png", "/lib/b/y.png")

    assert res.ok, res.error
    new_id = derive_id("/lib/b/y.png")
    assert res.data == {"ok": True, "id": new_id, "oldId": old_id, "path": "/lib/b/y.png", "name": "y.png"}
    assert (await store.get_by_path("/lib/a/x.png")).data is None
    moved = (await store.get_by_path("/lib/b/y.png")).data
    assert moved.folder_path == "/lib/b"
    assert (moved.last_modified, moved.thumb_width) == (42, 40)
    for user in ("alice", "bob"):
        ids = (await favorites.list_favorite_ids(user)).data["files"]
        assert ids == [new_id]


@pytest.mark.asyncio
async def test_rename_repoints_thumbnail(memory_services):
    store = memory_services["store"]
    old_id = (await store.upsert(file_entry("/lib/x.png"))).data
    await store.set_thumbnail(old_id, "/thumbs/x.jpg")

    res = await memory_services["renamer"].rename("/lib/x.png", "/lib/z.png")

    assert res.ok
    assert (await store.get_thumbnail(old_id)).data is None
    thumb = (await store.get_thumbnail(derive_id("/lib/z.png"))).data
    assert thumb["thumbnail_path"] == "/thumbs/x.jpg"


@pytest.mark.asyncio
async def test_rename_keeps_existing_favorite_on_target_id(memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    old_id = (await store.upsert(file_entry("/lib/x.png"))).data
    new_id = derive_id("/lib/y.png")
    await favorites.add("alice", old_id, "file")
    # A stale favorite left behind on the target id.
    await favorites.add("alice", new_id, "file")

    res = await memory_services["renamer"].rename("/lib/x.png", "/lib/y.png")

    assert res.ok
    assert (await favorites.list_favorite_ids("alice")).data["files"] == [new_id]


@pytest.mark.asyncio
async def test_rename_with_custom_name(memory_services):
    store = memory_services["store"]
    await store.upsert(file_entry("/lib/x.png"))

    res = await memory_services["renamer"].rename("/lib/x.png", "/lib/y.png", "Holiday.png")

    assert res.ok and res.data["name"] == "Holiday.png"
    assert (await store.get_by_path("/lib/y.png")).data.name == "Holiday.png"


@pytest.mark.asyncio
async def test_rename_errors_leave_catalog_untouched(memory_services):
    store = memory_services["store"]
    renamer = memory_services["renamer"]
    await store.upsert(file_entry("/lib/x.png"))
    await store.upsert(file_entry("/lib/taken.png"))

    missing = await renamer.rename("/lib/none.png", "/lib/new.png")
    conflict = await renamer.rename("/lib/x.png", "/lib/taken.png")
    same = await renamer.rename("/lib/x.png", "/lib//x.png")
    empty = await renamer.rename("", "/lib/new.png")

    assert missing.code == ErrorCode.NOT_FOUND.value
    assert conflict.code == ErrorCode.CONFLICT.value
    assert same.code == ErrorCode.INVALID_INPUT.value
    assert empty.code == ErrorCode.INVALID_INPUT.value
    assert (await store.get_all_paths()).data == ["/lib/taken.png", "/lib/x.png"]


@pytest.mark.asyncio
async def test_rename_failing_midway_leaves_catalog_untouched(monkeypatch, memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    db = memory_services["db"]

    old_id = (await store.upsert(file_entry("/lib/a/x.png"))).data
    await favorites.add("alice", old_id, "file")
    assert (await store.set_thumbnail(old_id, "/thumbs/x.jpg", 40, 20)).ok

    real_execute = db.aexecute

    async def _execute(query, params=None, fetch=False):
        if query.startswith("UPDATE thumbnails"):
            return Result.Err(ErrorCode.DB_ERROR, "disk I/O error")
        return await real_execute(query, params, fetch)

    monkeypatch.setattr(db, "aexecute", _execute)
    res = await memory_services["renamer"].rename("/lib/a/x.png", "/lib/b/y.png")
    monkeypatch.setattr(db, "aexecute", real_execute)

    assert not res.ok
    assert res.code == ErrorCode.DB_ERROR.value
    assert (await store.get_by_path("/lib/a/x.png")).data is not None
    assert (await store.get_by_path("/lib/b/y.png")).data is None
    assert (await favorites.list_favorite_ids("alice")).data["files"] == [old_id]
    thumbs = (await db.aquery("SELECT file_id FROM thumbnails")).data
    assert [t["file_id"] for t in thumbs] == [old_id]
