"""On-disk snapshot of the app list."""

from .app_cache import AppCache

__all__ = ["AppCache"]
