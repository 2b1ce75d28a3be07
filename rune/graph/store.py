"""
Knowledge graph store for Rune.

Entities and relationships live in DuckDB rows scoped by book id. There is no
in-process cache: every read goes through the database so concurrent writers
are always visible.
"""

import json
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime

from ..database import DatabaseManager, new_id
from ..errors import PersistenceError, RecordNotFoundError
from ..models import Entity, EntityType, Relationship, EntityNetwork
from .unresolved import find_unresolved_entities


ENTITY_COLUMNS = """
    id, book_id, entity_type, name, description, attributes,
    mention_count, first_mentioned_session, created_at, updated_at
"""

RELATIONSHIP_COLUMNS = """
    id, book_id, from_entity_id, to_entity_id, relationship_type, description, created_at
"""

UPDATABLE_ENTITY_FIELDS = ("name", "description", "attributes", "entity_type")


def _entity_from_row(row: Dict[str, Any]) -> Entity:
    row = dict(row)
    row["description"] = row.get("description") or ""
    row["attributes"] = json.loads(row.get("attributes") or "{}")
    return Entity(**row)


def _relationship_from_row(row: Dict[str, Any]) -> Relationship:
    row = dict(row)
    row["description"] = row.get("description") or ""
    return Relationship(**row)


class KnowledgeGraph:
    """
    Canonical registry of a book's entities and their relationships.
    """

    def __init__(self, db: DatabaseManager):
        """
        Initialize the knowledge graph store.

        Args:
            db: Connected database manager
        """
        self.db = db

    # Entities

    def add_entity(
        self,
        book_id: str,
        entity_type: EntityType,
        name: str,
        description: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None
    ) -> Entity:
        """
        Insert a new entity.

        This always creates a row; callers that want merge-on-mention semantics
        must check for an existing entity first (see ``merge_extraction``).

        Args:
            book_id: The owning book
            entity_type: person, place, theme or event
            name: Canonical display name
            description: Optional free-text description
            attributes: Optional key-value attributes
            session_id: Session in which the entity was first mentioned

        Returns:
            The stored entity

        Raises:
            RecordNotFoundError: If the book does not exist
            PersistenceError: If the insert fails
        """
        self.db.require_book(book_id)

        now = datetime.now()
        entity = Entity(
            id=new_id(),
            book_id=book_id,
            entity_type=EntityType(entity_type),
            name=name,
            description=description or "",
            attributes=attributes or {},
            mention_count=1,
            first_mentioned_session=session_id,
            created_at=now,
            updated_at=now
        )

        self.db.execute("""
            INSERT INTO knowledge_entities (
                id, book_id, entity_type, name, description, attributes,
                mention_count, first_mentioned_session, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            entity.id, book_id, entity.entity_type.value, entity.name,
            entity.description, json.dumps(entity.attributes), entity.mention_count,
            session_id, now, now
        ])
        return entity

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = self.db.fetch_one(
            f"SELECT {ENTITY_COLUMNS} FROM knowledge_entities WHERE id = ?", [entity_id]
        )
        return _entity_from_row(row) if row else None

    def get_entities(self, book_id: str, entity_type: Optional[EntityType] = None) -> List[Entity]:
        """
        List a book's entities, most mentioned first.

        Ties keep insertion order, so the listing is stable between calls.

        Args:
            book_id: The owning book
            entity_type: Optional filter by entity type

        Returns:
            List of entities
        """
        query = f"SELECT {ENTITY_COLUMNS} FROM knowledge_entities WHERE book_id = ?"
        params: List[Any] = [book_id]

        if entity_type:
            query += " AND entity_type = ?"
            params.append(EntityType(entity_type).value)

        query += " ORDER BY mention_count DESC, seq ASC"

        return [_entity_from_row(row) for row in self.db.fetch_all(query, params)]

    def update_entity(self, entity_id: str, **updates: Any) -> Entity:
        """
        Update some of an entity's fields.

        Args:
            entity_id: The entity to update
            **updates: Any of name, description, attributes, entity_type

        Returns:
            The updated entity

        Raises:
            ValueError: If an unknown field is given
            RecordNotFoundError: If the entity does not exist
        """
        unknown = set(updates) - set(UPDATABLE_ENTITY_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update entity fields: {', '.join(sorted(unknown))}")

        current = self.get_entity(entity_id)
        if current is None:
            raise RecordNotFoundError(f"Entity not found: {entity_id}")
        if not updates:
            return current

        assignments = []
        params: List[Any] = []
        for field_name in UPDATABLE_ENTITY_FIELDS:
            if field_name not in updates:
                continue
            value = updates[field_name]
            if field_name == "attributes":
                value = json.dumps(value or {})
            elif field_name == "entity_type":
                value = EntityType(value).value
            elif field_name == "description":
                value = value or ""
            assignments.append(f"{field_name} = ?")
            params.append(value)

        assignments.append("updated_at = ?")
        params.extend([datetime.now(), entity_id])

        self.db.execute(
            f"UPDATE knowledge_entities SET {', '.join(assignments)} WHERE id = ?", params
        )
        return self.get_entity(entity_id)

    def increment_mention_count(self, entity_id: str) -> None:
        """
        Add one to an entity's mention count.

        The increment is a single UPDATE evaluated by the database rather
        than a read followed by a write, so callers sharing one connection
        cannot overwrite each other's count.

        Raises:
            RecordNotFoundError: If the entity does not exist
        """
        if self.db.fetch_one("SELECT id FROM knowledge_entities WHERE id = ?", [entity_id]) is None:
            raise RecordNotFoundError(f"Entity not found: {entity_id}")

        self.db.execute(
            "UPDATE knowledge_entities SET mention_count = mention_count + 1, updated_at = ? WHERE id = ?",
            [datetime.now(), entity_id]
        )

    # Relationships

    def add_relationship(
        self,
        book_id: str,
        from_id: str,
        to_id: str,
        relationship_type: str,
        description: Optional[str] = None
    ) -> Relationship:
        """
        Add a directed edge between two entities of the same book.

        Duplicate edges are allowed.

        Raises:
            PersistenceError: If either endpoint is missing or belongs to
                another book, or the insert fails
        """
        for endpoint in (from_id, to_id):
            row = self.db.fetch_one(
                "SELECT book_id FROM knowledge_entities WHERE id = ?", [endpoint]
            )
            if row is None:
                raise PersistenceError(f"Relationship endpoint does not exist: {endpoint}")
            if row["book_id"] != book_id:
                raise PersistenceError(
                    f"Relationship endpoint {endpoint} belongs to another book"
                )

        relationship = Relationship(
            id=new_id(),
            book_id=book_id,
            from_entity_id=from_id,
            to_entity_id=to_id,
            relationship_type=relationship_type,
            description=description or "",
            created_at=datetime.now()
        )
        self.db.execute("""
            INSERT INTO entity_relationships (
                id, book_id, from_entity_id, to_entity_id, relationship_type, description, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            relationship.id, book_id, from_id, to_id, relationship_type,
            relationship.description, relationship.created_at
        ])
        return relationship

    def get_relationships(self, book_id: str, entity_id: Optional[str] = None) -> List[Relationship]:
        """
        List a book's relationships.

        Args:
            book_id: The owning book
            entity_id: If given, only edges where the entity is the source
                or the target. Outgoing edges come first.

        Returns:
            List of relationships, deduplicated by id
        """
        base = f"SELECT {RELATIONSHIP_COLUMNS} FROM entity_relationships WHERE book_id = ?"

        if entity_id is None:
            rows = self.db.fetch_all(base + " ORDER BY seq", [book_id])
            return [_relationship_from_row(row) for row in rows]

        outgoing = self.db.fetch_all(base + " AND from_entity_id = ? ORDER BY seq", [book_id, entity_id])
        incoming = self.db.fetch_all(base + " AND to_entity_id = ? ORDER BY seq", [book_id, entity_id])

        seen = set()
        merged = []
        for row in outgoing + incoming:
            if row["id"] in seen:
                continue
            seen.add(row["id"])
            merged.append(_relationship_from_row(row))
        return merged

    # Read APIs

    def get_entity_network(self, book_id: str) -> EntityNetwork:
        """Return every entity and relationship of a book."""
        return EntityNetwork(
            entities=self.get_entities(book_id),
            relationships=self.get_relationships(book_id)
        )

    def find_unresolved(self, book_id: str) -> List[Entity]:
        """
        Find entities that lack a description or have no relationships.

        Reads the whole graph, so call it after a synthesis rather than on
        every mutation.
        """
        network = self.get_entity_network(book_id)
        unresolved = find_unresolved_entities(network.entities, network.relationships)
        logging.info(f"Found {len(unresolved)} unresolved entities in book {book_id}")
        return unresolved
