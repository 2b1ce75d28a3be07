"""
Database manager for Rune.

This module owns the DuckDB connection and schema. The knowledge graph and
backlog stores issue their queries through the helpers here so that every
driver failure surfaces as a PersistenceError.
"""

import duckdb
import logging
import uuid
from typing import Any, List, Optional, Dict, Sequence
from datetime import datetime

from ..errors import PersistenceError, RecordNotFoundError
from ..models import Book, BookType, Session, WorkspaceFile, Room


def new_id() -> str:
    """Generate a fresh primary key."""
    return str(uuid.uuid4())


class DatabaseManager:
    """
    Manages the DuckDB database holding books, sessions, the knowledge graph
    and the backlog.
    """

    def __init__(self, db_path: str = "rune.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the DuckDB database file, or ":memory:"
        """
        self.db_path = db_path
        self.connection = None

    def connect(self):
        """Establish connection to the database."""
        try:
            self.connection = duckdb.connect(self.db_path)
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to open database {self.db_path}: {e}") from e

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _require_connection(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")
        return self.connection

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.

        Each table that needs a stable listing order carries a sequence-backed
        ``seq`` column recording insertion order. The schema declares no
        foreign keys; book ownership is checked by the stores on insert.

        Raises:
            PersistenceError: If DuckDB rejects the schema
        """
        for sequence in ("session_seq", "workspace_seq", "entity_seq",
                         "relationship_seq", "backlog_seq", "call_id_seq"):
            self.execute(f"CREATE SEQUENCE IF NOT EXISTS {sequence};")

        self.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                book_type VARCHAR NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id VARCHAR PRIMARY KEY,
                seq BIGINT DEFAULT nextval('session_seq'),
                book_id VARCHAR NOT NULL,
                session_number INTEGER NOT NULL,
                raw_transcript TEXT DEFAULT '',
                summary TEXT DEFAULT '',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS workspace_files (
                id VARCHAR PRIMARY KEY,
                seq BIGINT DEFAULT nextval('workspace_seq'),
                book_id VARCHAR NOT NULL,
                room VARCHAR NOT NULL,
                category VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                content TEXT DEFAULT '',
                source_session_id VARCHAR,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS knowledge_entities (
                id VARCHAR PRIMARY KEY,
                seq BIGINT DEFAULT nextval('entity_seq'),
                book_id VARCHAR NOT NULL,
                entity_type VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                description TEXT DEFAULT '',
                attributes TEXT DEFAULT '{}',
                first_mentioned_session VARCHAR,
                mention_count INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS entity_relationships (
                id VARCHAR PRIMARY KEY,
                seq BIGINT DEFAULT nextval('relationship_seq'),
                book_id VARCHAR NOT NULL,
                from_entity_id VARCHAR NOT NULL,
                to_entity_id VARCHAR NOT NULL,
                relationship_type VARCHAR NOT NULL,
                description TEXT DEFAULT '',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS backlog_items (
                id VARCHAR PRIMARY KEY,
                seq BIGINT DEFAULT nextval('backlog_seq'),
                book_id VARCHAR NOT NULL,
                item_type VARCHAR NOT NULL,
                content TEXT NOT NULL,
                priority INTEGER NOT NULL DEFAULT 1 CHECK (priority BETWEEN 1 AND 5),
                source_session_id VARCHAR,
                source_entity_id VARCHAR,
                status VARCHAR NOT NULL DEFAULT 'open',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                addressed_at TIMESTAMP
            )
        """)

        self.execute("""
            CREATE TABLE IF NOT EXISTS ai_agent_calls (
                call_id BIGINT PRIMARY KEY DEFAULT nextval('call_id_seq'),
                agent_name VARCHAR NOT NULL,
                input_data TEXT NOT NULL,
                system_prompt TEXT,
                user_prompt TEXT NOT NULL,
                model_name VARCHAR NOT NULL,
                raw_response TEXT NOT NULL,
                success BOOLEAN NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                book_id VARCHAR,
                session_id VARCHAR,
                called_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    # Query helpers shared by the stores

    def execute(self, query: str, params: Optional[Sequence[Any]] = None):
        """
        Run a statement, translating driver failures.

        Raises:
            PersistenceError: If DuckDB rejects the statement
        """
        connection = self._require_connection()
        try:
            return connection.execute(query, list(params or []))
        except duckdb.Error as e:
            raise PersistenceError(f"Database operation failed: {e}") from e

    def fetch_all(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a query and return its rows as dictionaries keyed by column name.
        """
        cursor = self.execute(query, params)
        try:
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except duckdb.Error as e:
            raise PersistenceError(f"Failed to read query results: {e}") from e

    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """Run a query and return the first row, or None."""
        rows = self.fetch_all(query, params)
        return rows[0] if rows else None

    # Books

    def create_book(self, title: str, book_type: BookType = BookType.MEMOIR) -> Book:
        """
        Create a new book.

        Args:
            title: Title of the book
            book_type: memoir, fiction or nonfiction

        Returns:
            The stored book
        """
        book = Book(id=new_id(), title=title, book_type=BookType(book_type), created_at=datetime.now())
        self.execute("""
            INSERT INTO books (id, title, book_type, created_at)
            VALUES (?, ?, ?, ?)
        """, [book.id, book.title, book.book_type.value, book.created_at])
        logging.info(f"Created book {book.id}: {title}")
        return book

    def get_book(self, book_id: str) -> Optional[Book]:
        row = self.fetch_one("SELECT * FROM books WHERE id = ?", [book_id])
        return Book(**row) if row else None

    def list_books(self) -> List[Book]:
        rows = self.fetch_all("SELECT * FROM books ORDER BY created_at")
        return [Book(**row) for row in rows]

    def require_book(self, book_id: str) -> Book:
        """
        Get a book that must exist.

        Raises:
            RecordNotFoundError: If no book has this id
        """
        book = self.get_book(book_id)
        if book is None:
            raise RecordNotFoundError(f"Book not found: {book_id}")
        return book

    # Sessions

    def add_session(self, book_id: str, raw_transcript: str = "") -> Session:
        """
        Record a new session for a book.

        The session number is the current count plus one. Two sessions added
        concurrently for the same book can receive the same number.

        Args:
            book_id: The owning book
            raw_transcript: Transcript text of the session

        Returns:
            The stored session

        Raises:
            RecordNotFoundError: If the book does not exist
        """
        self.require_book(book_id)
        session = Session(
            id=new_id(),
            book_id=book_id,
            session_number=self.count_sessions(book_id) + 1,
            raw_transcript=raw_transcript,
            created_at=datetime.now()
        )
        self.execute("""
            INSERT INTO sessions (id, book_id, session_number, raw_transcript, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, [session.id, book_id, session.session_number, raw_transcript, session.created_at])
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        row = self.fetch_one("""
            SELECT id, book_id, session_number, raw_transcript, summary, created_at
            FROM sessions WHERE id = ?
        """, [session_id])
        if not row:
            return None
        row["raw_transcript"] = row["raw_transcript"] or ""
        row["summary"] = row["summary"] or ""
        return Session(**row)

    def update_session_summary(self, session_id: str, summary: str) -> None:
        if self.get_session(session_id) is None:
            raise RecordNotFoundError(f"Session not found: {session_id}")
        self.execute("UPDATE sessions SET summary = ? WHERE id = ?", [summary, session_id])

    def count_sessions(self, book_id: str) -> int:
        """
        Count the sessions recorded for a book.

        Args:
            book_id: The book to count sessions for

        Returns:
            Number of sessions
        """
        row = self.execute(
            "SELECT COUNT(*) FROM sessions WHERE book_id = ?", [book_id]
        ).fetchone()
        return int(row[0]) if row else 0

    # Workspace

    def add_workspace_file(
        self,
        book_id: str,
        room: Room,
        category: str,
        title: str,
        content: str = "",
        source_session_id: Optional[str] = None
    ) -> WorkspaceFile:
        """
        File content into one of the book's workspace rooms.

        Returns:
            The stored workspace file

        Raises:
            RecordNotFoundError: If the book does not exist
        """
        self.require_book(book_id)
        workspace_file = WorkspaceFile(
            id=new_id(),
            book_id=book_id,
            room=Room(room),
            category=category,
            title=title,
            content=content,
            source_session_id=source_session_id,
            created_at=datetime.now()
        )
        self.execute("""
            INSERT INTO workspace_files
                (id, book_id, room, category, title, content, source_session_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            workspace_file.id, book_id, workspace_file.room.value, category, title,
            content, source_session_id, workspace_file.created_at
        ])
        return workspace_file

    def list_workspace_files(self, book_id: str, room: Optional[Room] = None) -> List[WorkspaceFile]:
        query = """
            SELECT id, book_id, room, category, title, content, source_session_id, created_at
            FROM workspace_files
            WHERE book_id = ?
        """
        params: List[Any] = [book_id]
        if room:
            query += " AND room = ?"
            params.append(Room(room).value)
        query += " ORDER BY seq"
        return [WorkspaceFile(**row) for row in self.fetch_all(query, params)]

    def has_draft_files(self, book_id: str) -> bool:
        """
        Check whether any file exists in the book's drafts room.

        Args:
            book_id: The book to check

        Returns:
            True if the book has draft-stage content
        """
        row = self.execute(
            "SELECT COUNT(*) FROM workspace_files WHERE book_id = ? AND room = ?",
            [book_id, Room.DRAFTS.value]
        ).fetchone()
        return bool(row and row[0] > 0)

    # AI call log

    def log_ai_agent_call(
        self,
        agent_name: str,
        input_data: str,
        system_prompt: Optional[str],
        user_prompt: str,
        model_name: str,
        raw_response: str,
        success: bool = True,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        book_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> Optional[int]:
        """
        Log an AI agent call to the database for reproducibility.

        Returns:
            The id of the logged call
        """
        result = self.execute("""
            INSERT INTO ai_agent_calls (
                agent_name, input_data, system_prompt, user_prompt, model_name,
                raw_response, success, error_message, execution_time_ms,
                book_id, session_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING call_id
        """, [
            agent_name, input_data, system_prompt, user_prompt, model_name,
            raw_response, success, error_message, execution_time_ms,
            book_id, session_id
        ]).fetchone()
        return result[0] if result else None

    def get_ai_agent_calls(
        self,
        agent_name: Optional[str] = None,
        book_id: Optional[str] = None,
        success_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict]:
        """
        Retrieve AI agent calls from the database, newest first.

        Args:
            agent_name: Filter by agent name (optional)
            book_id: Filter by book ID (optional)
            success_only: Only return successful calls
            limit: Limit number of results

        Returns:
            List of AI agent call records
        """
        query = """
            SELECT call_id, agent_name, input_data, system_prompt, user_prompt,
                   model_name, raw_response, success, error_message,
                   execution_time_ms, book_id, session_id, called_at
            FROM ai_agent_calls
            WHERE 1=1
        """
        params: List[Any] = []

        if agent_name:
            query += " AND agent_name = ?"
            params.append(agent_name)

        if book_id:
            query += " AND book_id = ?"
            params.append(book_id)

        if success_only:
            query += " AND success = true"

        query += " ORDER BY call_id DESC"

        if limit:
            query += f" LIMIT {int(limit)}"

        return self.fetch_all(query, params)
