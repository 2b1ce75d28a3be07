"""
Backlog store for Rune.

Backlog items are created open and can only move to addressed or dismissed.
Listings are ordered by stored base priority (highest first) and then by
insertion order; ``get_next_item`` relies on that order to break ties.
"""

import logging
from typing import Any, List, Optional
from datetime import datetime

from ..config import config
from ..database import DatabaseManager, new_id
from ..errors import PersistenceError, RecordNotFoundError
from ..models import BacklogItem, BacklogItemType, BacklogStatus, MIN_PRIORITY, MAX_PRIORITY
from .priority import calculate_priority


BACKLOG_COLUMNS = """
    id, book_id, item_type, content, priority, source_session_id,
    source_entity_id, status, created_at, addressed_at
"""


class BacklogManager:
    """
    Manages backlog items and picks the next one to talk about.
    """

    def __init__(self, db: DatabaseManager):
        """
        Initialize the backlog manager.

        Args:
            db: Connected database manager
        """
        self.db = db

    def add_backlog_item(
        self,
        book_id: str,
        item_type: BacklogItemType,
        content: str,
        source_session_id: Optional[str] = None,
        source_entity_id: Optional[str] = None,
        priority: Optional[int] = None
    ) -> BacklogItem:
        """
        Add a new open item to the backlog.

        Args:
            book_id: The owning book
            item_type: Kind of follow-up
            content: Description of the follow-up
            source_session_id: Session that produced the item
            source_entity_id: Entity the item is about
            priority: Base priority between 1 and 5, defaults to the
                configured default (1)

        Returns:
            The stored item

        Raises:
            ValueError: If the priority is out of range or content is blank
            RecordNotFoundError: If the book does not exist
            PersistenceError: If the source entity or session is missing or
                belongs to another book, or the insert fails
        """
        if priority is None:
            priority = config.default_priority
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValueError(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}")
        if not content or not content.strip():
            raise ValueError("Backlog item content cannot be empty")

        self.db.require_book(book_id)
        self._check_source(book_id, "knowledge_entities", source_entity_id, "entity")
        self._check_source(book_id, "sessions", source_session_id, "session")

        item = BacklogItem(
            id=new_id(),
            book_id=book_id,
            item_type=BacklogItemType(item_type),
            content=content.strip(),
            priority=priority,
            source_session_id=source_session_id,
            source_entity_id=source_entity_id,
            status=BacklogStatus.OPEN,
            created_at=datetime.now()
        )

        self.db.execute("""
            INSERT INTO backlog_items (
                id, book_id, item_type, content, priority, source_session_id,
                source_entity_id, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            item.id, book_id, item.item_type.value, item.content, priority,
            source_session_id, source_entity_id, item.status.value, item.created_at
        ])
        return item

    def _check_source(self, book_id: str, table: str, source_id: Optional[str], label: str) -> None:
        if source_id is None:
            return
        row = self.db.fetch_one(f"SELECT book_id FROM {table} WHERE id = ?", [source_id])
        if row is None:
            raise PersistenceError(f"Source {label} does not exist: {source_id}")
        if row["book_id"] != book_id:
            raise PersistenceError(f"Source {label} {source_id} belongs to another book")

    def get_backlog_item(self, item_id: str) -> Optional[BacklogItem]:
        row = self.db.fetch_one(f"SELECT {BACKLOG_COLUMNS} FROM backlog_items WHERE id = ?", [item_id])
        return BacklogItem(**row) if row else None

    def get_backlog_items(
        self,
        book_id: str,
        status: Optional[BacklogStatus] = None,
        item_type: Optional[BacklogItemType] = None
    ) -> List[BacklogItem]:
        """
        List a book's backlog items.

        The order is stored base priority descending, then insertion order.
        This is not the effective ranking; use ``calculate_priority`` or
        ``get_next_item`` for that.

        Args:
            book_id: The owning book
            status: Optional status filter
            item_type: Optional type filter

        Returns:
            List of backlog items
        """
        query = f"SELECT {BACKLOG_COLUMNS} FROM backlog_items WHERE book_id = ?"
        params: List[Any] = [book_id]

        if status:
            query += " AND status = ?"
            params.append(BacklogStatus(status).value)

        if item_type:
            query += " AND item_type = ?"
            params.append(BacklogItemType(item_type).value)

        query += " ORDER BY priority DESC, seq ASC"

        return [BacklogItem(**row) for row in self.db.fetch_all(query, params)]

    def open_items_for_entity(self, book_id: str, entity_id: str) -> List[BacklogItem]:
        rows = self.db.fetch_all(f"""
            SELECT {BACKLOG_COLUMNS} FROM backlog_items
            WHERE book_id = ? AND source_entity_id = ? AND status = ?
            ORDER BY priority DESC, seq ASC
        """, [book_id, entity_id, BacklogStatus.OPEN.value])
        return [BacklogItem(**row) for row in rows]

    def _close_item(self, item_id: str, status: BacklogStatus) -> BacklogItem:
        item = self.get_backlog_item(item_id)
        if item is None:
            raise RecordNotFoundError(f"Backlog item not found: {item_id}")

        if item.status.is_terminal:
            logging.info(f"Backlog item {item_id} is already {item.status.value}")
            return item

        # The status guard keeps a concurrent close from being overwritten
        self.db.execute("""
            UPDATE backlog_items SET status = ?, addressed_at = ?
            WHERE id = ? AND status = ?
        """, [status.value, datetime.now(), item_id, BacklogStatus.OPEN.value])
        return self.get_backlog_item(item_id)

    def address_item(self, item_id: str) -> BacklogItem:
        """
        Mark an item as addressed.

        Closing an item that is already addressed or dismissed changes
        nothing and returns it as stored.

        Raises:
            RecordNotFoundError: If the item does not exist
        """
        return self._close_item(item_id, BacklogStatus.ADDRESSED)

    def dismiss_item(self, item_id: str) -> BacklogItem:
        """
        Dismiss an item so it won't surface again.

        Raises:
            RecordNotFoundError: If the item does not exist
        """
        return self._close_item(item_id, BacklogStatus.DISMISSED)

    def get_next_item(self, book_id: str) -> Optional[BacklogItem]:
        """
        Get the open item with the highest effective priority.

        Session count and draft presence are read once for the whole
        backlog. On equal scores the item listed first wins.

        Args:
            book_id: The book to pick an item for

        Returns:
            The best open item, or None if the backlog has no open items
        """
        items = self.get_backlog_items(book_id, status=BacklogStatus.OPEN)
        if not items:
            return None

        session_count = self.db.count_sessions(book_id)
        has_drafts = self.db.has_draft_files(book_id)

        best: Optional[BacklogItem] = None
        best_score = None
        for item in items:
            score = calculate_priority(item, session_count, has_drafts)
            if best_score is None or score > best_score:
                best, best_score = item, score

        logging.info(f"Next backlog item for book {book_id}: {best.id} (score {best_score})")
        return best
