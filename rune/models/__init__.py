"""Data models for Rune."""

from .entities import Entity, EntityType, Relationship, EntityNetwork, normalize_name
from .backlog import BacklogItem, BacklogItemType, BacklogStatus, MIN_PRIORITY, MAX_PRIORITY
from .book import Book, BookType, Session, WorkspaceFile, Room
from .extraction import (
    EntityCandidate,
    RelationshipCandidate,
    ExtractionResult,
    BacklogCandidate,
    WorkspaceFileCandidate,
    SynthesisResult,
    MergedEntity,
    MergeResult,
)

__all__ = [
    "Entity",
    "EntityType",
    "Relationship",
    "EntityNetwork",
    "normalize_name",
    "BacklogItem",
    "BacklogItemType",
    "BacklogStatus",
    "MIN_PRIORITY",
    "MAX_PRIORITY",
    "Book",
    "BookType",
    "Session",
    "WorkspaceFile",
    "Room",
    "EntityCandidate",
    "RelationshipCandidate",
    "ExtractionResult",
    "BacklogCandidate",
    "WorkspaceFileCandidate",
    "SynthesisResult",
    "MergedEntity",
    "MergeResult",
]
