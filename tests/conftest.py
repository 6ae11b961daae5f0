import sys

import pytest_asyncio

from repo_root import REPO_ROOT

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest_asyncio.fixture
async def services(tmp_path):
    from lumina_backend.deps import build_services

    db_path = str(tmp_path / "catalog.db")
    library = tmp_path / "library"
    library.mkdir()
    svc_res = await build_services(db_path, library_roots=[str(library)], persist_enabled=True)
    assert svc_res.ok, svc_res.error
    svc = svc_res.data
    try:
        yield svc
    finally:
        await svc["db"].aclose()


@pytest_asyncio.fixture
async def memory_services():
    from lumina_backend.deps import build_services

    svc_res = await build_services(in_memory=True, library_roots=[])
    assert svc_res.ok, svc_res.error
    svc = svc_res.data
    try:
        yield svc
    finally:
        await svc["db"].aclose()
