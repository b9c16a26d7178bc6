"""API module."""

from .guards import require, require_any, require_all, require_permission

__all__ = [
    "require",
    "require_any",
    "require_all",
    "require_permission",
]
