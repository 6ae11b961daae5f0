"""
Library scan endpoint.

`POST /api/scan` runs an incremental sync of the library roots. With
`{"background": true}` the sync runs as a task owned by the application and
the call returns immediately; the task is cancelled between batches on
shutdown.

`POST /api/scan/control` pauses, resumes or stops the running sync, and
`GET /api/scan/status` reports its progress.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from aiohttp import web

from ...shared import ErrorCode, Result, get_logger
from ...utils import parse_bool, split_list
from ..core import _json_response, _principal, _read_json, _require_services

logger = get_logger(__name__)


@dataclass
class ScanState:
    task: asyncio.Task | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    last_report: dict | None = None
    last_error: str | None = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


SCAN_STATE_KEY: web.AppKey[ScanState] = web.AppKey("lumina_scan_state", ScanState)


def init_scan_state(app: web.Application) -> ScanState:
    """Attach the scan state to `app`. Must run before the app is frozen."""
    state = app.get(SCAN_STATE_KEY)
    if state is None:
        state = ScanState()
        app[SCAN_STATE_KEY] = state
    return state


def _scan_state(request: web.Request) -> tuple[ScanState | None, Result | None]:
    state = request.app.get(SCAN_STATE_KEY)
    if state is None:
        return None, Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Scan state is not initialised")
    return state, None


async def stop_background_scan(app: web.Application) -> None:
    """Signal the background scan to stop and wait for the current batch to finish."""
    state = app.get(SCAN_STATE_KEY)
    if state is None or not state.running:
        return
    state.cancel_event.set()
    await asyncio.gather(state.task, return_exceptions=True)


async def _run_background_scan(state: ScanState, catalog, roots, source_id) -> None:
    try:
        result = await catalog.sync(roots, source_id, state.cancel_event)
    except Exception as exc:
        logger.error("Background scan crashed: %s", exc, exc_info=True)
        state.last_error = str(exc)
        return
    state.last_report = result.data if result.ok else dict(result.meta or {})
    state.last_error = None if result.ok else result.error


def register_scan_routes(routes: web.RouteTableDef) -> None:
    """Register scan routes."""

    @routes.post("/api/scan")
    async def scan(request: web.Request) -> web.Response:
        """
        Sync the catalog with the filesystem.

        Body: {"roots": [...], "sourceId": "...", "background": false}
        Roots default to the configured library roots.
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)
        if _principal(request).restricted:
            return _json_response(Result.Err(ErrorCode.FORBIDDEN, "Scanning requires an unrestricted user"))

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        body = body_res.data or {}

        roots = split_list(body.get("roots")) or None
        source_id = str(body.get("sourceId") or body.get("source_id") or "").strip() or None
        catalog = services["catalog"]
        state, state_error = _scan_state(request)
        if state_error:
            return _json_response(state_error)
        if state.running:
            return _json_response(Result.Err(ErrorCode.SCAN_BUSY, "A scan is already running"))

        if not parse_bool(body.get("background"), False):
            return _json_response(await catalog.sync(roots, source_id))

        state.cancel_event = asyncio.Event()
        state.task = asyncio.create_task(_run_background_scan(state, catalog, roots, source_id))
        logger.info("Background scan started")
        return _json_response(Result.Ok({"started": True}))

    @routes.post("/api/scan/control")
    async def scan_control(request: web.Request) -> web.Response:
        """
        Control the running sync.

        Body: {"action": "pause" | "resume" | "stop" | "cancel"}
        Requests take effect between batches.
        """
        services, error = _require_services(request)
        if error:
            return _json_response(error)
        if _principal(request).restricted:
            return _json_response(Result.Err(ErrorCode.FORBIDDEN, "Scan control requires an unrestricted user"))
        state, state_error = _scan_state(request)
        if state_error:
            return _json_response(state_error)

        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)
        action = str((body_res.data or {}).get("action") or "").strip().lower()

        result = services["catalog"].control_sync(action)
        if result.ok and action in ("stop", "cancel") and state.running:
            state.cancel_event.set()
        return _json_response(result)

    @routes.get("/api/scan/status")
    async def scan_status(request: web.Request) -> web.Response:
        services, error = _require_services(request)
        if error:
            return _json_response(error)
        state, state_error = _scan_state(request)
        if state_error:
            return _json_response(state_error)
        engine = services["catalog"].sync_engine
        progress = engine.progress()
        return _json_response(
            Result.Ok(
                {
                    "running": state.running or engine.is_running,
                    "status": progress.pop("status"),
                    "progress": progress,
                    "lastReport": state.last_report,
                    "lastError": state.last_error,
                }
            )
        )
