"""
Backlog models for Rune.

Backlog items are follow-ups the assistant should raise in future sessions.
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


MIN_PRIORITY = 1
MAX_PRIORITY = 5


class BacklogItemType(str, Enum):
    """Kinds of follow-up item."""

    QUESTION = "question"
    CONTRADICTION = "contradiction"
    THIN_SPOT = "thin_spot"
    UNEXPLORED = "unexplored"
    REVIEW = "review"
    IDEA = "idea"


class BacklogStatus(str, Enum):
    """Lifecycle state of a backlog item. Only OPEN is non-terminal."""

    OPEN = "open"
    ADDRESSED = "addressed"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self is not BacklogStatus.OPEN


class BacklogItem(BaseModel):
    """
    A follow-up unit of work for future conversation.
    """

    id: str = Field(
        ...,
        description="Unique identifier of the item"
    )

    book_id: str = Field(
        ...,
        description="The book that owns this item"
    )

    item_type: BacklogItemType = Field(
        ...,
        description="What kind of follow-up this is"
    )

    content: str = Field(
        ...,
        description="Human-readable description of the follow-up"
    )

    priority: int = Field(
        default=MIN_PRIORITY,
        ge=MIN_PRIORITY,
        le=MAX_PRIORITY,
        description="Stored base priority; the effective score is computed on read"
    )

    source_session_id: Optional[str] = Field(
        default=None,
        description="Session whose analysis produced this item"
    )

    source_entity_id: Optional[str] = Field(
        default=None,
        description="Entity this item is about, if any"
    )

    status: BacklogStatus = Field(
        default=BacklogStatus.OPEN,
        description="open, addressed or dismissed"
    )

    created_at: Optional[datetime] = None

    addressed_at: Optional[datetime] = Field(
        default=None,
        description="When the item left the open state"
    )
