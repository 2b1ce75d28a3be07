"""Database access for Rune."""

from .manager import DatabaseManager, new_id

__all__ = ["DatabaseManager", "new_id"]
