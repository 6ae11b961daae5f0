"""
Response utilities for route handlers.
"""

import math

from aiohttp import web

from ...config import DEBUG
from ...shared import Result, sanitize_error_message


def safe_error_message(exc: Exception, generic_message: str) -> str:
    """
    Return a safe message for clients.

    By default filesystem paths are masked. When `LUMINA_DEBUG` is enabled,
    the raw exception string is included to help debugging.
    """
    if DEBUG:
        return f"{generic_message}: {exc}"
    return sanitize_error_message(exc, generic_message)


def _json_response(result: Result, status: int | None = None) -> web.Response:
    """
    Convert Result to JSON response.

    Args:
        result: Result object
        status: HTTP status code (optional, 200 when None)

    Returns:
        aiohttp web.Response
    """
    # Business / validation errors return HTTP 200 with {ok:false,...}.
    # An explicit status is only used for unhandled server failures.
    if status is None:
        status = 200

    payload = _sanitize_json_payload(
        {
            "ok": result.ok,
            "data": result.data,
            "error": result.error,
            "code": result.code,
            "meta": result.meta,
        }
    )
    return web.json_response(payload, status=status)


def _sanitize_json_payload(value):
    """
    Normalize payload values so they are always valid strict JSON.
    - Converts NaN/Infinity floats to None.
    - Recurses through dict/list/tuple containers.
    """
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: _sanitize_json_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_json_payload(v) for v in value]
    return value
