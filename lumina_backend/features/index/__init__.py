"""Index feature: filesystem walking and incremental sync."""
from .fs_walker import FileSystemWalker, WalkEntry
from .sync import SyncDiff, SyncEngine, diff

__all__ = ["FileSystemWalker", "WalkEntry", "SyncDiff", "SyncEngine", "diff"]
