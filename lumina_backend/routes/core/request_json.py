"""
Safe JSON request parsing with size limits.

Guarantees:
- Never raises to handlers (returns Result)
- Enforces an upper bound on JSON payload size
"""

from __future__ import annotations

import json
from typing import Any

from aiohttp import web

from ...config import _env_int
from ...shared import ErrorCode, Result

DEFAULT_MAX_JSON_BYTES = 1024 * 1024  # 1MB
MIN_JSON_BYTES = 1024
REQUEST_STREAM_CHUNK_BYTES = 64 * 1024


def _max_json_bytes() -> int:
    return _env_int(DEFAULT_MAX_JSON_BYTES, "LUMINA_MAX_JSON_SIZE", min_value=MIN_JSON_BYTES)


async def _read_json(request: web.Request, *, max_bytes: int | None = None) -> Result[dict]:
    """
    Read and decode a JSON request body with a strict max size.

    Returns:
        Result.Ok(dict) or Result.Err(code, error, ...)
    """
    limit = int(max_bytes) if max_bytes is not None else _max_json_bytes()
    limit = max(MIN_JSON_BYTES, limit)

    length_error = _content_length_error(request, limit)
    if length_error is not None:
        return length_error
    body = await _read_request_body_limited(request, limit)
    if not body.ok:
        return Result.Err(body.code or ErrorCode.INVALID_JSON, body.error or "Invalid request body", **(body.meta or {}))
    return _decode_and_parse_json_dict(body.data or b"")


def _content_length_error(request: web.Request, limit: int) -> Result[dict] | None:
    cl = request.headers.get("Content-Length")
    if not cl:
        return None
    try:
        size = int(cl)
    except ValueError:
        return Result.Err(ErrorCode.INVALID_INPUT, "Invalid Content-Length header")
    if size <= limit:
        return None
    return Result.Err(ErrorCode.INVALID_INPUT, f"JSON body too large ({size} > {limit})", limit=limit, size=size)


async def _read_request_body_limited(request: web.Request, limit: int) -> Result[bytes]:
    buf = bytearray()
    try:
        async for chunk in request.content.iter_chunked(REQUEST_STREAM_CHUNK_BYTES):
            if not chunk:
                continue
            buf.extend(chunk)
            if len(buf) > limit:
                return Result.Err(ErrorCode.INVALID_INPUT, f"JSON body too large (> {limit})", limit=limit, size=len(buf))
    except (OSError, ValueError, RuntimeError) as exc:
        return Result.Err(ErrorCode.INVALID_JSON, f"Failed to read request body: {exc}")
    return Result.Ok(bytes(buf))


def _decode_and_parse_json_dict(body: bytes) -> Result[dict]:
    try:
        text = body.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        return Result.Err(ErrorCode.INVALID_JSON, f"Invalid UTF-8 JSON body: {exc}")
    try:
        parsed: Any = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as exc:
        return Result.Err(ErrorCode.INVALID_JSON, f"Invalid JSON body: {exc}")
    if not isinstance(parsed, dict):
        return Result.Err(ErrorCode.INVALID_JSON, "JSON body must be an object")
    return Result.Ok(parsed)
