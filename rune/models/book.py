"""
Book, session and workspace models for Rune.

These are the minimal records the engine needs around the knowledge graph:
the owning book, the sessions it has had and the files in its workspace.
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class BookType(str, Enum):
    MEMOIR = "memoir"
    FICTION = "fiction"
    NONFICTION = "nonfiction"


class Room(str, Enum):
    """Workspace areas a file can live in."""

    BRAINSTORM = "brainstorm"
    DRAFTS = "drafts"
    PUBLISH = "publish"


class Book(BaseModel):
    """The root aggregate owning every other record."""

    id: str
    title: str
    book_type: BookType = BookType.MEMOIR
    created_at: Optional[datetime] = None


class Session(BaseModel):
    """
    One conversation session about a book.
    """

    id: str
    book_id: str
    session_number: int = Field(
        ...,
        ge=1,
        description="1-based position of the session within its book"
    )
    raw_transcript: str = ""
    summary: str = ""
    created_at: Optional[datetime] = None


class WorkspaceFile(BaseModel):
    """A file filed into one of the book's workspace rooms."""

    id: str
    book_id: str
    room: Room
    category: str
    title: str
    content: str = ""
    source_session_id: Optional[str] = None
    created_at: Optional[datetime] = None
