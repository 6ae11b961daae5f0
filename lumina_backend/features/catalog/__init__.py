"""Catalog feature: records, store, queries, favorites and rename consistency."""
from .favorites import Favorites
from .ids import derive_id
from .models import FileQuery, FileRecord, FolderAggregate
from .query import QueryEngine, build_file_filters
from .rename import RenameManager
from .service import CatalogService
from .store import CatalogStore

__all__ = [
    "CatalogService",
    "CatalogStore",
    "Favorites",
    "FileQuery",
    "FileRecord",
    "FolderAggregate",
    "QueryEngine",
    "RenameManager",
    "build_file_filters",
    "derive_id",
]
