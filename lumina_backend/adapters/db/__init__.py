"""Storage backend: in-memory SQLite with atomic snapshot persistence."""
from .sqlite import Sqlite

__all__ = ["Sqlite"]
