"""
Unresolved entity detection.

An entity is unresolved when nothing is known about it (blank description) or
when it is not connected to anything (it is neither end of any relationship).
Either condition is enough.
"""

from typing import Iterable, List

from ..models import Entity, Relationship


def find_unresolved_entities(entities: Iterable[Entity], relationships: Iterable[Relationship]) -> List[Entity]:
    """
    Select the entities that need follow-up.

    Pure function over a snapshot of the graph; the input order of
    ``entities`` is preserved.

    Args:
        entities: All entities of a book
        relationships: All relationships of the same book

    Returns:
        Entities with a blank description or no relationships
    """
    connected = set()
    for relationship in relationships:
        connected.add(relationship.from_entity_id)
        connected.add(relationship.to_entity_id)

    return [
        entity for entity in entities
        if not entity.has_description or entity.id not in connected
    ]
