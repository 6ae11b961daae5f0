import pytest

from lumina_backend.features.catalog.ids import derive_id
from lumina_backend.features.catalog.models import FileQuery
from lumina_shared import ErrorCode

from catalog_factory import file_entries


@pytest.mark.asyncio
async def test_toggle_flips_state(memory_services):
    favorites = memory_services["favorites"]
    file_id = derive_id("/lib/a.png")

    on = await favorites.toggle("alice", file_id, "file")
    off = await favorites.toggle("alice", file_id, "file")
    on_again = await favorites.toggle("alice", file_id, "FILE")

    assert (on.data, off.data, on_again.data) == (True, False, True)
    assert (await favorites.is_favorite("alice", file_id, "file")).data is True


@pytest.mark.asyncio
async def test_add_and_remove_are_idempotent(memory_services):
    favorites = memory_services["favorites"]
    db = memory_services["db"]

    await favorites.add("alice", "/lib/a/", "folder")
    await favorites.add("alice", "/lib/a", "folder")
    rows = await db.aquery("SELECT item_id FROM favorites")
    assert [r["item_id"] for r in rows.data] == ["/lib/a"]

    assert (await favorites.remove("alice", "/lib/a", "folder")).data is False
    assert (await favorites.remove("alice", "/lib/a", "folder")).data is False


@pytest.mark.asyncio
async def test_invalid_favorites_are_rejected(memory_services):
    favorites = memory_services["favorites"]

    assert (await favorites.toggle("", "x", "file")).code == ErrorCode.INVALID_INPUT.value
    assert (await favorites.toggle("alice", "", "file")).code == ErrorCode.INVALID_INPUT.value
    assert (await favorites.toggle("alice", "x", "album")).code == ErrorCode.INVALID_INPUT.value


@pytest.mark.asyncio
async def test_list_favorite_ids_resolves_path_keyed_rows(memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    db = memory_services["db"]
    await store.batch_insert(file_entries("/lib/a.png", "/lib/b.png"))

    await favorites.add("alice", derive_id("/lib/a.png"), "file")
    await favorites.add("alice", "/lib", "folder")
    # Written by an older release: keyed by path.
    await db.aexecute(
        "INSERT INTO favorites (user_id, item_id, item_type, created_at) VALUES ('alice', '/lib/b.png', 'file', 0)"
    )

    res = await favorites.list_favorite_ids("alice")

    assert res.ok
    assert set(res.data["files"]) == {derive_id("/lib/a.png"), derive_id("/lib/b.png")}
    assert res.data["folders"] == ["/lib"]
    assert (await favorites.list_favorite_ids("bob")).data == {"files": [], "folders": []}


@pytest.mark.asyncio
async def test_favorite_files_view_skips_vanished_files(memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    await store.batch_insert(file_entries("/lib/a.png", "/lib/b.mp4", "/lib/c.png"))
    for path in ("/lib/a.png", "/lib/b.mp4", "/lib/gone.png"):
        await favorites.add("alice", derive_id(path), "file")

    files = await favorites.query_favorite_files("alice")
    images = await favorites.query_favorite_files("alice", FileQuery(media_type=["image"]))
    count = await favorites.count_favorite_files("alice")

    assert {f.path for f in files.data} == {"/lib/a.png", "/lib/b.mp4"}
    assert all(f.is_favorite for f in files.data)
    assert [f.path for f in images.data] == ["/lib/a.png"]
    assert count.data == 2


@pytest.mark.asyncio
async def test_favorite_files_view_keeps_permission_boundary(memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    await store.batch_insert(file_entries("/lib/a/x.png", "/lib/b/y.png"))
    for path in ("/lib/a/x.png", "/lib/b/y.png"):
        await favorites.add("alice", derive_id(path), "file")

    scoped = await favorites.query_favorite_files("alice", FileQuery(allowed_paths=["/lib/a"]))
    locked = await favorites.query_favorite_files("alice", FileQuery(allowed_paths=[]))

    assert [f.path for f in scoped.data] == ["/lib/a/x.png"]
    assert locked.data == []
