"""
Database models for StarX mining backend.

Contains SQLAlchemy models backing the user store.
"""

from .base import Base, BaseModel, TimestampMixin
from .user import MiningUser

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "MiningUser",
]
