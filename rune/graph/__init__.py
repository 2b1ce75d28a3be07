"""Knowledge graph: entity store, merge protocol and unresolved detection."""

from .store import KnowledgeGraph
from .merge import merge_extraction
from .unresolved import find_unresolved_entities

__all__ = ["KnowledgeGraph", "merge_extraction", "find_unresolved_entities"]
