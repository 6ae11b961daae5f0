"""
File and folder mutation endpoints: rename, delete, folder delete.

These only touch catalog records; moving or unlinking the files on disk is
the caller's job.
"""
from aiohttp import web

from ...features.catalog.ids import path_from_id
from ...shared import ErrorCode, Result, get_logger
from ..core import _json_response, _principal, _read_json, _require_services

logger = get_logger(__name__)


def _body_path(body: dict, *keys: str) -> str:
    for key in keys:
        value = body.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def register_file_routes(routes: web.RouteTableDef) -> None:
    """Register catalog mutation routes."""

    @routes.post("/api/files/rename")
    async def rename_file(request: web.Request) -> web.Response:
        """
        Move a catalog record to a new path.

        Body: {"oldPath": "...", "newPath": "...", "newName": "..."}
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        body = body_res.data or {}

        old_path = _body_path(body, "oldPath", "old_path")
        new_path = _body_path(body, "newPath", "new_path")
        if not old_path or not new_path:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing oldPath or newPath"))

        principal = _principal(request)
        if not principal.can_access(old_path):
            # Same answer as a missing record so existence is not leaked.
            return _json_response(Result.Err(ErrorCode.NOT_FOUND, "File is not catalogued"))
        if not principal.can_access(new_path):
            return _json_response(Result.Err(ErrorCode.FORBIDDEN, "Target path is outside the allowed paths"))

        new_name = _body_path(body, "newName", "new_name") or None
        return _json_response(await services["catalog"].rename_file(old_path, new_path, new_name))

    @routes.post("/api/files/delete")
    async def delete_file(request: web.Request) -> web.Response:
        """
        Remove a file record with its favorites and thumbnail metadata.

        Body: {"path": "...", "id": "..."}
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        body = body_res.data or {}

        path = _body_path(body, "path", "filePath")
        if not path:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing path"))
        principal = _principal(request)
        if not principal.can_access(path):
            return _json_response(Result.Ok({"ok": True, "deleted": 0}))

        file_id = _body_path(body, "id", "fileId") or None
        if file_id and principal.restricted:
            id_path = path_from_id(file_id)
            if id_path is None or not principal.can_access(id_path):
                return _json_response(Result.Ok({"ok": True, "deleted": 0}))
        return _json_response(await services["catalog"].delete_file(path, file_id))

    @routes.post("/api/folders/delete")
    async def delete_folder(request: web.Request) -> web.Response:
        """
        Remove every record at or below a folder.

        Body: {"path": "..."}
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        body = body_res.data or {}

        path = _body_path(body, "path", "folderPath")
        if not path:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing path"))
        if not _principal(request).can_access(path):
            return _json_response(Result.Err(ErrorCode.FORBIDDEN, "Folder is outside the allowed paths"))

        result = await services["catalog"].delete_folder(path)
        if result.ok:
            logger.info("Folder removed from catalog: %s (%s records)", path, (result.data or {}).get("deleted", 0))
        return _json_response(result)
