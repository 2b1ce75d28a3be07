"""
Merge extracted entities and relationships into a book's knowledge graph.

Names are matched case- and whitespace-insensitively against the existing
graph. A known name counts as a re-mention of the existing entity; an unknown
name creates a new one. Relationships are resolved through the same name map
after all entities are processed, so they can point at entities created from
the same batch.
"""

import logging
from typing import Dict, Optional

from ..errors import PersistenceError
from ..models import (
    Entity,
    EntityCandidate,
    ExtractionResult,
    MergedEntity,
    MergeResult,
    normalize_name,
)
from .store import KnowledgeGraph


def _record_mention(graph: KnowledgeGraph, existing: Entity, candidate: EntityCandidate) -> Entity:
    """Count a re-mention and fold in anything new the candidate knows."""
    graph.increment_mention_count(existing.id)

    updates = {}
    if not existing.has_description and candidate.description.strip():
        updates["description"] = candidate.description.strip()
    if candidate.attributes:
        updates["attributes"] = {**existing.attributes, **candidate.attributes}

    if updates:
        return graph.update_entity(existing.id, **updates)
    return graph.get_entity(existing.id) or existing


def merge_extraction(
    graph: KnowledgeGraph,
    book_id: str,
    extraction: ExtractionResult,
    session_id: Optional[str] = None
) -> MergeResult:
    """
    Apply one chunk's extraction to the knowledge graph.

    Each entity and each relationship is written independently: a failed
    write is logged and left out of the result without undoing anything
    already written. Relationships whose endpoints cannot be resolved are
    skipped.

    Args:
        graph: Knowledge graph store
        book_id: The book the text belongs to
        extraction: Validated extraction agent output
        session_id: Session the text came from, recorded on new entities

    Returns:
        The entities and relationships that were persisted

    Raises:
        PersistenceError: If the existing entities cannot be read
    """
    by_name: Dict[str, Entity] = {}
    for entity in graph.get_entities(book_id):
        # Listing is most-mentioned first, so that entity wins a name clash
        by_name.setdefault(entity.normalized_name, entity)

    result = MergeResult()

    for candidate in extraction.entities:
        key = normalize_name(candidate.name)
        existing = by_name.get(key)

        try:
            if existing:
                entity = _record_mention(graph, existing, candidate)
                is_new = False
            else:
                entity = graph.add_entity(
                    book_id,
                    candidate.entity_type,
                    candidate.name,
                    candidate.description.strip(),
                    candidate.attributes,
                    session_id
                )
                is_new = True
        except PersistenceError as e:
            logging.error(f"Failed to merge entity '{candidate.name}': {e}")
            continue

        by_name[key] = entity
        result.entities.append(MergedEntity(entity=entity, is_new=is_new))

    for candidate in extraction.relationships:
        source = by_name.get(normalize_name(candidate.from_name))
        target = by_name.get(normalize_name(candidate.to_name))

        if not source or not target:
            logging.warning(
                f"Skipping relationship '{candidate.from_name}' -> '{candidate.to_name}': "
                f"unknown entity"
            )
            result.skipped_relationships.append(candidate)
            continue

        try:
            relationship = graph.add_relationship(
                book_id,
                source.id,
                target.id,
                candidate.relationship_type,
                candidate.description
            )
        except PersistenceError as e:
            logging.error(
                f"Failed to add relationship '{candidate.from_name}' -> '{candidate.to_name}': {e}"
            )
            continue

        result.relationships.append(relationship)

    new_count = len(result.new_entities)
    logging.info(
        f"Merged {len(result.entities)} entities ({new_count} new) and "
        f"{len(result.relationships)} relationships into book {book_id}"
    )
    return result
