"""
User store backends.
"""

from .base import UserStore
from .memory import InMemoryUserStore
from .user_repository import SqlUserStore

__all__ = [
    "UserStore",
    "InMemoryUserStore",
    "SqlUserStore",
]
