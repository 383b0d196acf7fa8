"""API routes package."""

from . import mining

__all__ = ["mining"]
