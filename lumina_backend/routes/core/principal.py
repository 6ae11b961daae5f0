"""
Caller identity as set by the external auth layer.

The auth middleware stores a mapping under `request["principal"]`:
`{"userId": str, "allowedPaths": list[str] | None}`. Without a principal the
caller is the local admin, unrestricted.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from aiohttp import web

from ...utils import normalize_catalog_path, split_list

DEFAULT_USER_ID = "admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    allowed_paths: list[str] | None = None

    @property
    def restricted(self) -> bool:
        return self.allowed_paths is not None

    def can_access(self, path: str) -> bool:
        """True when `path` equals or is nested under one of the allowed paths."""
        if self.allowed_paths is None:
            return True
        target = normalize_catalog_path(path)
        return any(target == root or target.startswith(root.rstrip("/") + "/") for root in self.allowed_paths)


def _principal(request: web.Request) -> Principal:
    raw = request.get("principal")
    if not isinstance(raw, Mapping):
        return Principal(DEFAULT_USER_ID)
    user_id = str(raw.get("userId") or raw.get("user_id") or DEFAULT_USER_ID).strip() or DEFAULT_USER_ID
    allowed = raw.get("allowedPaths", raw.get("allowed_paths"))
    # An empty list is an explicit lockout, not "unrestricted".
    if allowed is None:
        return Principal(user_id)
    return Principal(user_id, [normalize_catalog_path(p) for p in split_list(allowed)])
