"""
Knowledge graph models for Rune.

This module defines the entities and relationships tracked for each book.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class EntityType(str, Enum):
    """The four kinds of entity tracked in a book's knowledge graph."""

    PERSON = "person"
    PLACE = "place"
    THEME = "theme"
    EVENT = "event"


def normalize_name(name: str) -> str:
    """
    Normalize an entity name for deduplication.

    Case is folded and runs of whitespace collapse to a single space, so
    "  maria  LOPEZ" and "Maria Lopez" resolve to the same entity.
    """
    return " ".join(name.split()).casefold()


class Entity(BaseModel):
    """
    A person, place, theme or event referenced in a book's material.
    """

    id: str = Field(
        ...,
        description="Unique identifier of the entity"
    )

    book_id: str = Field(
        ...,
        description="The book that owns this entity"
    )

    entity_type: EntityType = Field(
        ...,
        description="The classified type of the entity"
    )

    name: str = Field(
        ...,
        description="The canonical display name"
    )

    description: str = Field(
        default="",
        description="Free-text description, empty until something is known"
    )

    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary key-value attributes"
    )

    mention_count: int = Field(
        default=1,
        ge=1,
        description="Approximate number of times the entity has been mentioned"
    )

    first_mentioned_session: Optional[str] = Field(
        default=None,
        description="The session in which the entity was first recorded"
    )

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.name)

    @property
    def has_description(self) -> bool:
        return bool(self.description and self.description.strip())


class Relationship(BaseModel):
    """
    A directed, typed edge between two entities of the same book.
    """

    id: str = Field(..., description="Unique identifier of the relationship")
    book_id: str = Field(..., description="The book that owns this relationship")
    from_entity_id: str = Field(..., description="Source entity")
    to_entity_id: str = Field(..., description="Target entity")
    relationship_type: str = Field(..., description="Free-text relationship label")
    description: str = Field(default="", description="How the two entities relate")
    created_at: Optional[datetime] = None


class EntityNetwork(BaseModel):
    """
    The full knowledge graph of a book, as handed to visualization.
    """

    entities: List[Entity] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
