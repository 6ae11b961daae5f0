"""
Library browsing endpoints: files, folders and catalog statistics.
"""
from __future__ import annotations

from typing import Any

from aiohttp import web

from ...features.catalog import FileQuery
from ...shared import Result, get_logger
from ...utils import parse_bool
from ..core import _json_response, _principal, _require_services

logger = get_logger(__name__)

_LIST_PARAMS = ("mediaType", "media_type", "excludeMediaType", "exclude_media_type")


def _query_params(request: web.Request) -> dict[str, Any]:
    """Flatten the query string; list filters may repeat (`mediaType=image&mediaType=video`)."""
    params: dict[str, Any] = {}
    for key in request.query:
        if key in _LIST_PARAMS:
            params[key] = request.query.getall(key)
        else:
            params[key] = request.query.get(key)
    return params


def register_library_routes(routes: web.RouteTableDef) -> None:
    """Register library browsing routes."""

    @routes.get("/api/library/files")
    async def list_files(request: web.Request) -> web.Response:
        """
        List catalogued files.

        Query params: folderPath, recursive, mediaType, excludeMediaType,
        sourceId, random, favorites, limit, offset.
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        principal = _principal(request)
        query = FileQuery.from_params(_query_params(request))
        query.user_id = principal.user_id
        query = query.restricted(principal.allowed_paths)
        with_total = parse_bool(request.query.get("withTotal"), True)
        return _json_response(await services["catalog"].query_files(query, with_total=with_total))

    @routes.get("/api/library/folders")
    async def list_folders(request: web.Request) -> web.Response:
        """
        List direct child folders of `parentPath` (root level when omitted).

        Query params: parentPath, favorites.
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        principal = _principal(request)
        parent = request.query.get("parentPath") or request.query.get("parent_path") or None
        favorites_only = parse_bool(request.query.get("favorites"), False)
        result = await services["catalog"].query_folders(
            parent,
            favorites_only=favorites_only,
            user_id=principal.user_id,
            allowed_paths=principal.allowed_paths,
        )
        return _json_response(result)

    @routes.get("/api/system/stats")
    async def get_stats(request: web.Request) -> web.Response:
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        principal = _principal(request)
        result = await services["catalog"].get_stats(principal.allowed_paths)
        if not result.ok:
            return _json_response(result)
        stats = dict(result.data or {})
        if not principal.restricted:
            stats.update(services["catalog"].status())
        return _json_response(Result.Ok(stats))
