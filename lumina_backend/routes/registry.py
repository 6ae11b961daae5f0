"""
Route registration system.
Coordinates all route handlers and installs the API middlewares on an aiohttp app.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable

from aiohttp import web

from ..shared import get_logger, request_id_var
from .handlers import (
    register_favorites_routes,
    register_file_routes,
    register_library_routes,
    register_scan_routes,
)
from .handlers.scan import init_scan_state, stop_background_scan

API_PREFIX = "/api/"
_REQUEST_ID_HEADER = "X-Request-ID"
_APP_KEY_MIDDLEWARES_INSTALLED: web.AppKey[bool] = web.AppKey("_lumina_middlewares_installed", bool)

logger = get_logger(__name__)


@web.middleware
async def request_context_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Bind a request id to the logging context and echo it back."""
    rid = (request.headers.get(_REQUEST_ID_HEADER) or "").strip()[:64] or uuid.uuid4().hex[:12]
    request["request_id"] = rid
    token = request_id_var.set(rid)
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers[_REQUEST_ID_HEADER] = rid
        raise
    finally:
        request_id_var.reset(token)
    response.headers[_REQUEST_ID_HEADER] = rid
    return response


@web.middleware
async def security_headers_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Apply strict headers to API responses only."""
    response = await handler(request)
    if not request.path.startswith(API_PREFIX):
        return response

    response.headers.setdefault("Content-Security-Policy", "default-src 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Cache-Control", "no-store")
    return response


def _install_middlewares(app: web.Application) -> None:
    if app.get(_APP_KEY_MIDDLEWARES_INSTALLED):
        return
    app.middlewares.insert(0, security_headers_middleware)
    app.middlewares.insert(0, request_context_middleware)
    app[_APP_KEY_MIDDLEWARES_INSTALLED] = True


def register_all_routes(routes: web.RouteTableDef | None = None) -> web.RouteTableDef:
    """
    Register all route handlers and return the RouteTableDef.
    This is the central registration point for all routes.
    """
    table = routes if routes is not None else web.RouteTableDef()
    register_library_routes(table)
    register_favorites_routes(table)
    register_file_routes(table)
    register_scan_routes(table)
    logger.debug("Registered %s API routes", len(list(table)))
    return table


def register_routes(app: web.Application) -> None:
    """Install middlewares, routes, scan state and the background scan shutdown hook on `app`."""
    _install_middlewares(app)
    app.router.add_routes(register_all_routes())
    init_scan_state(app)
    # on_shutdown runs before cleanup_ctx closes the catalog.
    app.on_shutdown.append(stop_background_scan)
