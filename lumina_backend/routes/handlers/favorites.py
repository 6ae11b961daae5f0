"""
Favorite endpoints.
"""
from aiohttp import web

from ...features.catalog.ids import path_from_id
from ...shared import ErrorCode, ItemType, Result, get_logger
from ..core import _json_response, _principal, _read_json, _require_services

logger = get_logger(__name__)


def register_favorites_routes(routes: web.RouteTableDef) -> None:
    """Register favorite routes."""

    @routes.get("/api/favorites/ids")
    async def list_favorite_ids(request: web.Request) -> web.Response:
        """Favorite ids of the calling user: `{files, folders}`."""
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        principal = _principal(request)
        return _json_response(await services["catalog"].list_favorite_ids(principal.user_id))

    @routes.post("/api/favorites/toggle")
    async def toggle_favorite(request: web.Request) -> web.Response:
        """
        Toggle a favorite for the calling user.

        Body: {"itemId": "...", "itemType": "file" | "folder"}
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        body = body_res.data or {}

        item_id = str(body.get("itemId") or body.get("item_id") or "").strip()
        item_type = str(body.get("itemType") or body.get("item_type") or ItemType.FILE.value).strip().lower()
        if not item_id:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing itemId"))

        principal = _principal(request)
        if principal.restricted:
            item_path = item_id if item_type == ItemType.FOLDER.value else path_from_id(item_id)
            if item_path is None or not principal.can_access(item_path):
                return _json_response(Result.Err(ErrorCode.FORBIDDEN, "Item is outside the allowed paths"))

        result = await services["catalog"].toggle_favorite(principal.user_id, item_id, item_type)
        if result.ok:
            logger.debug("Favorite toggled for %s: %s %s", principal.user_id, item_type, item_id)
        return _json_response(result)
