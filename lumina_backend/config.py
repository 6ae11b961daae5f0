"""
Configuration for the Lumina media catalog.

Every setting can be overridden through environment variables; invalid values
fall back to the defaults with a warning.
"""
import os
import logging
from pathlib import Path

from .utils import env_bool, normalize_catalog_path

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


def _resolve_data_dir() -> Path:
    env_path = _env_raw("LUMINA_DATA_DIR")
    if env_path:
        try:
            return Path(env_path).expanduser().resolve()
        except (OSError, RuntimeError):
            logger.warning("Failed to resolve LUMINA_DATA_DIR: %s, using fallback", env_path)
    return (Path.cwd() / "data").resolve()


def _resolve_library_paths() -> list[str]:
    raw = _env_raw("LUMINA_LIBRARY_PATHS")
    if not raw:
        return []
    roots: list[str] = []
    for part in raw.split(os.pathsep):
        root = normalize_catalog_path(part)
        if root and root not in roots:
            roots.append(root)
    return roots


# Storage
DATA_DIR = _resolve_data_dir()
SNAPSHOT_FILE = _env_raw("LUMINA_SNAPSHOT_FILE", default=str(DATA_DIR / "lumina.db"))
PERSIST_ENABLED = _env_bool(True, "LUMINA_PERSIST_ENABLED")

# Library
LIBRARY_PATHS = _resolve_library_paths()
DEFAULT_SOURCE_ID = _env_raw("LUMINA_DEFAULT_SOURCE_ID", default="local") or "local"

# Queries
QUERY_MAX_LIMIT = _env_int(5000, "LUMINA_QUERY_MAX_LIMIT", min_value=1, max_value=100_000)
QUERY_DEFAULT_LIMIT = _env_int(500, "LUMINA_QUERY_DEFAULT_LIMIT", min_value=1, max_value=QUERY_MAX_LIMIT)

# Sync
SYNC_BATCH_SIZE = _env_int(1000, "LUMINA_SYNC_BATCH_SIZE", min_value=1, max_value=50_000)
SYNC_CHECKPOINT_INTERVAL = _env_int(10_000, "LUMINA_SYNC_CHECKPOINT_INTERVAL", min_value=0)
SYNC_MTIME_TOLERANCE_MS = _env_int(0, "LUMINA_SYNC_MTIME_TOLERANCE_MS", min_value=0, max_value=60_000)
SCAN_IOPS_LIMIT = _env_float(0.0, "LUMINA_SCAN_IOPS_LIMIT", min_value=0.0)

# HTTP
SERVER_HOST = _env_raw("LUMINA_HOST", default="127.0.0.1") or "127.0.0.1"
SERVER_PORT = _env_int(3000, "LUMINA_PORT", min_value=1, max_value=65535)
DEBUG = _env_bool(False, "LUMINA_DEBUG")


def initialize_directories() -> None:
    """Create the data directory holding the snapshot file."""
    if SNAPSHOT_FILE:
        Path(SNAPSHOT_FILE).expanduser().parent.mkdir(parents=True, exist_ok=True)
