"""
Rune: backlog prioritization and knowledge-graph engine for an AI-assisted
book-writing assistant.

Tracks the people, places, themes and events of a book as sessions go by, and
decides what the assistant should ask about next.
"""

__version__ = "0.1.0"
__author__ = "Rune Project"

# Import main components
from .database import DatabaseManager
from .models import Entity, Relationship, BacklogItem, EntityNetwork
from .graph import KnowledgeGraph, merge_extraction, find_unresolved_entities
from .backlog import BacklogManager, calculate_priority
from .agents import AgentRunner
from .pipeline import SessionProcessor

__all__ = [
    "DatabaseManager",
    "Entity",
    "Relationship",
    "BacklogItem",
    "EntityNetwork",
    "KnowledgeGraph",
    "merge_extraction",
    "find_unresolved_entities",
    "BacklogManager",
    "calculate_priority",
    "AgentRunner",
    "SessionProcessor",
]
