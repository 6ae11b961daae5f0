"""
Core utilities for route handlers.
"""
from .principal import DEFAULT_USER_ID, Principal, _principal
from .request_json import _read_json
from .response import _json_response, safe_error_message
from .services import SERVICES_KEY, _require_services

__all__ = [
    "_json_response",
    "safe_error_message",
    "_read_json",
    "_principal",
    "Principal",
    "DEFAULT_USER_ID",
    "SERVICES_KEY",
    "_require_services",
]
