"""
Catalog record identity.

A file id is a pure function of its path: base64 of the UTF-8 path, the scheme
existing snapshots were written with. Nothing else in the catalog may build
ids, so the scheme can change here without touching callers.
"""
import base64


def derive_id(path: str) -> str:
    return base64.b64encode(str(path).encode("utf-8")).decode("ascii")


def path_from_id(file_id: str) -> str | None:
    """Inverse of `derive_id`, None when `file_id` is not a valid id."""
    try:
        return base64.b64decode(str(file_id).encode("ascii"), validate=True).decode("utf-8")
    except (ValueError, UnicodeError):
        return None
