"""
Session processing pipeline for Rune.

Connects the agents to the stores: extraction output is merged into the
knowledge graph, synthesis output becomes backlog items and workspace files,
and unresolved entities are turned into backlog items.
"""

import logging
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .agents import AgentRunner
from .backlog import BacklogManager
from .config import config
from .database import DatabaseManager
from .errors import PersistenceError
from .graph import KnowledgeGraph, merge_extraction
from .models import BacklogItem, BacklogItemType, MergeResult, WorkspaceFile


class SynthesisOutcome(BaseModel):
    """What a session synthesis persisted."""

    summary: str = ""
    entities: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Entities the synthesis agent saw in the session, as reported"
    )
    backlog_items: List[BacklogItem] = Field(default_factory=list)
    workspace_files: List[WorkspaceFile] = Field(default_factory=list)
    seeded_items: List[BacklogItem] = Field(default_factory=list)


class SessionProcessor:
    """
    Runs the write path for a book's sessions.
    """

    def __init__(self, db: DatabaseManager, agent_runner: AgentRunner):
        """
        Initialize the session processor.

        Args:
            db: Connected database manager
            agent_runner: Runner used for the extraction and synthesis agents
        """
        self.db = db
        self.agent_runner = agent_runner
        self.graph = KnowledgeGraph(db)
        self.backlog = BacklogManager(db)

    def extract(self, book_id: str, session_id: Optional[str], text: str) -> MergeResult:
        """
        Extract entities from a chunk of session text and merge them.

        Raises:
            AgentCallError: If the extraction agent cannot be called
            ExtractionParseError: If its response cannot be parsed
        """
        extraction = self.agent_runner.run_extraction_agent(text, book_id=book_id, session_id=session_id)
        return merge_extraction(self.graph, book_id, extraction, session_id)

    def synthesize(self, book_id: str, session_id: str, seed_unresolved: Optional[bool] = None) -> SynthesisOutcome:
        """
        Analyze a finished session and persist the follow-ups it produces.

        Backlog items and workspace files are written one at a time; a failed
        write is logged and left out of the outcome.

        Args:
            book_id: The owning book
            session_id: The session to synthesize
            seed_unresolved: Also seed the backlog from unresolved entities;
                defaults to the configured behaviour

        Returns:
            What was persisted

        Raises:
            ValueError: If the book or session does not exist, or the session
                has no transcript
            AgentCallError: If the synthesis agent cannot be called
            ExtractionParseError: If its response cannot be parsed
        """
        book = self.db.get_book(book_id)
        if book is None:
            raise ValueError(f"Book not found: {book_id}")

        session = self.db.get_session(session_id)
        if session is None or session.book_id != book_id:
            raise ValueError(f"Session not found: {session_id}")
        if not session.raw_transcript.strip():
            raise ValueError(f"Session {session_id} has no transcript to synthesize")

        synthesis = self.agent_runner.run_synthesis_agent(
            session.raw_transcript,
            book.title,
            book.book_type,
            book_id=book_id,
            session_id=session_id
        )

        outcome = SynthesisOutcome(summary=synthesis.summary, entities=synthesis.entities)

        if synthesis.summary:
            try:
                self.db.update_session_summary(session_id, synthesis.summary)
            except PersistenceError as e:
                logging.error(f"Failed to update session summary: {e}")

        for candidate in synthesis.backlog_items:
            try:
                item = self.backlog.add_backlog_item(
                    book_id,
                    candidate.item_type,
                    candidate.content,
                    source_session_id=session_id,
                    priority=candidate.priority
                )
            except PersistenceError as e:
                logging.error(f"Failed to create backlog item: {e}")
                continue
            outcome.backlog_items.append(item)

        for candidate in synthesis.workspace_files:
            try:
                workspace_file = self.db.add_workspace_file(
                    book_id,
                    candidate.room,
                    candidate.category,
                    candidate.title,
                    candidate.content,
                    source_session_id=session_id
                )
            except PersistenceError as e:
                logging.error(f"Failed to create workspace file: {e}")
                continue
            outcome.workspace_files.append(workspace_file)

        if seed_unresolved is None:
            seed_unresolved = config.seed_unresolved_after_synthesis
        if seed_unresolved:
            outcome.seeded_items = self.seed_unresolved(book_id, session_id)

        logging.info(
            f"Synthesized session {session_id}: {len(outcome.backlog_items)} backlog items, "
            f"{len(outcome.workspace_files)} workspace files, {len(outcome.seeded_items)} seeded"
        )
        return outcome

    def seed_unresolved(self, book_id: str, session_id: Optional[str] = None) -> List[BacklogItem]:
        """
        Turn unresolved entities into backlog items.

        An entity with a blank description gets a thin_spot item; one that
        only lacks relationships gets an unexplored item. Entities that
        already have an open item linked to them are skipped, so reseeding
        is safe.

        Args:
            book_id: The book to seed
            session_id: Session to record as the items' source

        Returns:
            The items created
        """
        created = []

        for entity in self.graph.find_unresolved(book_id):
            try:
                if self.backlog.open_items_for_entity(book_id, entity.id):
                    continue

                if not entity.has_description:
                    item_type = BacklogItemType.THIN_SPOT
                    content = f"We know almost nothing about {entity.name} yet. Who or what is {entity.name}?"
                else:
                    item_type = BacklogItemType.UNEXPLORED
                    content = f"How does {entity.name} connect to the rest of the story?"

                item = self.backlog.add_backlog_item(
                    book_id,
                    item_type,
                    content,
                    source_session_id=session_id,
                    source_entity_id=entity.id
                )
            except PersistenceError as e:
                logging.error(f"Failed to seed backlog item for entity '{entity.name}': {e}")
                continue

            created.append(item)

        logging.info(f"Seeded {len(created)} backlog items from unresolved entities in book {book_id}")
        return created
