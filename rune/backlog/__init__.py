"""Backlog store, priority scoring and next-item selection."""

from .manager import BacklogManager
from .priority import calculate_priority, TYPE_WEIGHTS

__all__ = ["BacklogManager", "calculate_priority", "TYPE_WEIGHTS"]
