"""
aiohttp application factory and console entry point for the catalog API.
"""

from __future__ import annotations

import argparse
from collections.abc import AsyncIterator

from aiohttp import web

from .config import SERVER_HOST, SERVER_PORT
from .deps import build_services
from .routes import register_routes
from .routes.core import SERVICES_KEY
from .shared import CatalogCorruptError, ErrorCode, get_logger

logger = get_logger(__name__)


class ServiceStartupError(RuntimeError):
    """Catalog services could not be built; the server must not start."""


def _services_context(
    snapshot_path: str | None,
    in_memory: bool,
    library_roots: list[str] | None,
):
    async def _ctx(app: web.Application) -> AsyncIterator[None]:
        built = await build_services(snapshot_path, in_memory=in_memory, library_roots=library_roots)
        if not built.ok:
            if built.code == ErrorCode.DB_CORRUPT.value:
                raise CatalogCorruptError(built.error or "Catalog snapshot is corrupt")
            raise ServiceStartupError(built.error or "Catalog services unavailable")
        services = built.data or {}
        app[SERVICES_KEY] = services
        try:
            yield
        finally:
            await services["db"].aclose()
            logger.info("Catalog closed")

    return _ctx


def create_app(
    services: dict | None = None,
    *,
    snapshot_path: str | None = None,
    in_memory: bool = False,
    library_roots: list[str] | None = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        services: Prebuilt services (tests). When None, services are built on
            startup and closed on cleanup.
        snapshot_path: Snapshot file (defaults to LUMINA_SNAPSHOT_FILE)
        in_memory: Keep the catalog in memory only
        library_roots: Library roots (defaults to LUMINA_LIBRARY_PATHS)
    """
    app = web.Application()
    if services is not None:
        app[SERVICES_KEY] = services
    else:
        app.cleanup_ctx.append(_services_context(snapshot_path, in_memory, library_roots))
    register_routes(app)
    return app


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the Lumina media catalog API.")
    parser.add_argument("--host", default=SERVER_HOST, help=f"Bind address (default: {SERVER_HOST}).")
    parser.add_argument("--port", type=int, default=SERVER_PORT, help=f"Port (default: {SERVER_PORT}).")
    parser.add_argument("--snapshot", default=None, help="Snapshot file (default: LUMINA_SNAPSHOT_FILE).")
    parser.add_argument(
        "--library",
        action="append",
        default=None,
        help="Library root to catalog; repeat for several (default: LUMINA_LIBRARY_PATHS).",
    )
    parser.add_argument("--in-memory", action="store_true", help="Do not read or write a snapshot file.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    app = create_app(snapshot_path=args.snapshot, in_memory=args.in_memory, library_roots=args.library)
    logger.info("Serving catalog API on http://%s:%s", args.host, args.port)
    web.run_app(app, host=args.host, port=args.port, print=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
