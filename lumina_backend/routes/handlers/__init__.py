"""
Route handlers package.
"""
from .favorites import register_favorites_routes
from .files import register_file_routes
from .library import register_library_routes
from .scan import register_scan_routes

__all__ = [
    "register_library_routes",
    "register_favorites_routes",
    "register_file_routes",
    "register_scan_routes",
]
