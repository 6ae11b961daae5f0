"""
Service lookup for route handlers.

Services are built once by the application factory and stored on the aiohttp
application under `SERVICES_KEY`.
"""
from typing import Any

from aiohttp import web

from ...shared import ErrorCode, Result

SERVICES_KEY: web.AppKey[dict] = web.AppKey("lumina_services", dict)


def _require_services(request: web.Request) -> tuple[dict[str, Any] | None, Result[Any] | None]:
    services = request.app.get(SERVICES_KEY)
    if services and services.get("catalog") is not None:
        return services, None
    return None, Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Catalog services are unavailable")
