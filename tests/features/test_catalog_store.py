import pytest

from lumina_backend.features.catalog.ids import derive_id, path_from_id
from lumina_backend.features.catalog.models import FileRecord
from lumina_shared import ErrorCode, ms

from catalog_factory import file_entries, file_entry


@pytest.mark.asyncio
async def test_upsert_round_trip(memory_services):
    store = memory_services["store"]

    res = await store.upsert(file_entry("/lib/a/b.png", last_modified=1234, size=99))
    assert res.ok, res.error
    assert res.data == derive_id("/lib/a/b.png")

    got = (await store.get_by_id(res.data)).data
    assert got.path == "/lib/a/b.png"
    assert got.name == "b.png"
    assert got.folder_path == "/lib/a"
    assert got.size == 99
    assert got.mime_type == "image/png"
    assert got.media_type == "image"
    assert got.last_modified == 1234
    assert got.source_id == "local"


@pytest.mark.asyncio
async def test_upsert_is_idempotent(memory_services):
    store = memory_services["store"]
    db = memory_services["db"]

    await store.upsert(file_entry("/lib/a.png", last_modified=1))
    await store.upsert(file_entry("/lib/a.png", last_modified=1))
    await store.upsert(file_entry("/lib/a.png", last_modified=2, size=50))

    count = await db.aquery("SELECT COUNT(*) AS n FROM files")
    assert count.data[0]["n"] == 1
    got = (await store.get_by_path("/lib/a.png")).data
    assert got.last_modified == 2 and got.size == 50


@pytest.mark.asyncio
async def test_created_at_is_epoch_ms_and_kept_on_update(memory_services):
    store = memory_services["store"]

    before = ms()
    await store.upsert(file_entry("/lib/a.png", last_modified=1))
    after = ms()
    first = (await store.get_by_path("/lib/a.png")).data
    await store.upsert(file_entry("/lib/a.png", last_modified=2))
    second = (await store.get_by_path("/lib/a.png")).data

    assert before <= first.created_at <= after
    assert second.created_at == first.created_at


@pytest.mark.asyncio
async def test_upsert_keeps_thumbnail_dimensions_when_absent(memory_services):
    store = memory_services["store"]

    await store.upsert(file_entry("/lib/a.png", thumbWidth=200, thumbHeight=100, thumbAspectRatio=2.0))
    await store.upsert(file_entry("/lib/a.png", last_modified=5))

    got = (await store.get_by_path("/lib/a.png")).data
    assert (got.thumb_width, got.thumb_height, got.thumb_aspect_ratio) == (200, 100, 2.0)


@pytest.mark.asyncio
async def test_upsert_rejects_malformed_record(memory_services):
    store = memory_services["store"]

    res = await store.upsert({"path": "/lib/a.txt", "size": 1, "lastModified": 1})

    assert not res.ok
    assert (await store.get_all_paths()).data == []


@pytest.mark.asyncio
async def test_batch_insert_is_all_or_nothing(memory_services):
    store = memory_services["store"]
    good = file_entries("/lib/a.png", "/lib/b.png")
    bad = {"path": "/lib/c.png", "size": 1}  # no lastModified

    res = await store.batch_insert(good + [bad])

    assert not res.ok
    assert (await store.get_all_paths()).data == []

    ok = await store.batch_insert(good)
    assert ok.ok and ok.data == 2
    assert (await store.get_all_paths()).data == ["/lib/a.png", "/lib/b.png"]


@pytest.mark.asyncio
async def test_delete_cascades_favorites_and_thumbnails(memory_services):
    store = memory_services["store"]
    favorites = memory_services["favorites"]
    db = memory_services["db"]

    file_id = (await store.upsert(file_entry("/lib/a.png"))).data
    assert (await favorites.add("alice", file_id, "file")).ok
    assert (await store.set_thumbnail(file_id, "/thumbs/a.jpg", 300, 150)).ok

    res = await store.delete_by_path("/lib/a.png")

    assert res.ok and res.data == 1
    assert (await db.aquery("SELECT * FROM favorites")).data == []
    assert (await db.aquery("SELECT * FROM thumbnails")).data == []


@pytest.mark.asyncio
async def test_delete_of_unknown_path_is_noop(memory_services):
    res = await memory_services["store"].delete_by_path("/lib/never.png")

    assert res.ok and res.data == 0


@pytest.mark.asyncio
async def test_delete_by_folder_prefix_is_recursive_and_literal(memory_services):
    store = memory_services["store"]
    await store.batch_insert(
        file_entries(
            "/lib/a/x.png",
            "/lib/a/b/y.png",
            "/lib/ab/z.png",
            "/lib/a_c/w.png",
        )
    )

    res = await store.delete_by_folder_prefix("/lib/a")

    assert res.ok and res.data == 2
    assert (await store.get_all_paths()).data == ["/lib/a_c/w.png", "/lib/ab/z.png"]


@pytest.mark.asyncio
async def test_delete_by_folder_prefix_refuses_root(memory_services):
    res = await memory_services["store"].delete_by_folder_prefix("/")

    assert not res.ok and res.code == ErrorCode.INVALID_INPUT.value


@pytest.mark.asyncio
async def test_clear_all_empties_the_file_table(memory_services):
    store = memory_services["store"]
    await store.batch_insert(file_entries("/lib/a/x.png", "/lib/b/y.mp4"))

    res = await store.clear_all()

    assert res.ok and res.data == 2
    assert (await store.get_all_paths()).data == []
    assert (await memory_services["query"].query_folders()).data == []


@pytest.mark.asyncio
async def test_set_thumbnail_requires_catalogued_file(memory_services):
    store = memory_services["store"]

    res = await store.set_thumbnail(derive_id("/lib/none.png"), "/thumbs/none.jpg")

    assert not res.ok and res.code == ErrorCode.NOT_FOUND.value


@pytest.mark.asyncio
async def test_mutations_invalidate_folder_cache(memory_services):
    store = memory_services["store"]
    query = memory_services["query"]
    db = memory_services["db"]

    await store.upsert(file_entry("/lib/a/x.png"))
    assert (await query.rebuild_folder_cache()).ok
    assert await db.aget_meta("folder_cache_valid") == "1"

    await store.upsert(file_entry("/lib/a/y.png"))

    assert await db.aget_meta("folder_cache_valid") == "0"


@pytest.mark.asyncio
async def test_get_all_path_mtimes_scoped_by_roots(memory_services):
    store = memory_services["store"]
    await store.batch_insert([file_entry("/lib/a/x.png", 5), file_entry("/other/y.png", 7)])

    everything = (await store.get_all_path_mtimes()).data
    scoped = (await store.get_all_path_mtimes(["/lib"])).data

    assert everything == {"/lib/a/x.png": 5, "/other/y.png": 7}
    assert scoped == {"/lib/a/x.png": 5}


def test_ids_are_derived_from_path_only():
    record = FileRecord(path="/lib//a/b.png/", size=1, mime_type=None, media_type="image", last_modified=1)

    assert record.path == "/lib/a/b.png"
    assert record.id == derive_id("/lib/a/b.png")
    assert path_from_id(record.id) == "/lib/a/b.png"
    assert path_from_id("not base64!") is None


def test_relocated_record_changes_identity_only():
    record = FileRecord(
        path="/lib/a/b.png",
        size=5,
        mime_type="image/png",
        media_type="image",
        last_modified=9,
        thumb_width=10,
        thumb_height=5,
        created_at=3,
    )

    moved = record.relocated("/lib/c/d.png")

    assert moved.id == derive_id("/lib/c/d.png")
    assert moved.name == "d.png" and moved.folder_path == "/lib/c"
    assert (moved.size, moved.last_modified, moved.thumb_width, moved.created_at) == (5, 9, 10, 3)
