"""
Agent output models for Rune.

The extraction and synthesis agents return loosely-typed JSON. Each entry is
validated on its own against these models; entries that fail validation are
dropped by the parser instead of failing the whole payload.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .backlog import BacklogItemType, MIN_PRIORITY, MAX_PRIORITY
from .book import Room
from .entities import Entity, EntityType, Relationship


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


def _require_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class EntityCandidate(BaseModel):
    """An entity mention reported by the extraction agent."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    entity_type: EntityType = Field(..., alias="type")
    description: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def description_default(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("attributes", mode="before")
    @classmethod
    def attributes_default(cls, value: Any) -> Any:
        return {} if value is None else value


class RelationshipCandidate(BaseModel):
    """A connection between two named entities reported by the extraction agent."""

    model_config = ConfigDict(populate_by_name=True)

    from_name: str = Field(..., alias="from")
    to_name: str = Field(..., alias="to")
    relationship_type: str = Field(..., alias="type")
    description: str = ""

    @field_validator("from_name", "to_name", "relationship_type")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def description_default(cls, value: Any) -> Any:
        return _blank_if_none(value)


class ExtractionResult(BaseModel):
    """Validated output of the extraction agent for one chunk of text."""

    entities: List[EntityCandidate] = Field(default_factory=list)
    relationships: List[RelationshipCandidate] = Field(default_factory=list)


class BacklogCandidate(BaseModel):
    """A follow-up item proposed by the synthesis agent."""

    model_config = ConfigDict(populate_by_name=True)

    item_type: BacklogItemType = Field(..., alias="type")
    content: str
    priority: Optional[int] = None

    @field_validator("content")
    @classmethod
    def check_content(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("priority", mode="before")
    @classmethod
    def ignore_bad_priority(cls, value: Any) -> Any:
        # An unusable priority falls back to the default instead of dropping the item
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        if not MIN_PRIORITY <= value <= MAX_PRIORITY:
            return None
        return value


class WorkspaceFileCandidate(BaseModel):
    """A workspace file proposed by the synthesis agent."""

    room: Room
    category: str
    title: str
    content: str

    @field_validator("category", "title", "content")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _require_text(value)


class SynthesisResult(BaseModel):
    """Validated output of the synthesis agent for one session."""

    summary: str = ""
    entities: List[Dict[str, Any]] = Field(default_factory=list)
    backlog_items: List[BacklogCandidate] = Field(default_factory=list)
    workspace_files: List[WorkspaceFileCandidate] = Field(default_factory=list)


class MergedEntity(BaseModel):
    """An entity touched by a merge, flagged with whether it was created."""

    entity: Entity
    is_new: bool


class MergeResult(BaseModel):
    """
    What an extraction merge actually persisted.

    Partial success is expected: entities or edges whose writes failed are
    simply absent.
    """

    entities: List[MergedEntity] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
    skipped_relationships: List[RelationshipCandidate] = Field(default_factory=list)

    @property
    def new_entities(self) -> List[Entity]:
        return [merged.entity for merged in self.entities if merged.is_new]
