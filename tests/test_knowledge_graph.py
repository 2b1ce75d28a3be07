"""
Tests for the knowledge graph store, extraction merge and unresolved detection.
"""

import unittest
from unittest.mock import patch

from rune.database import DatabaseManager
from rune.errors import PersistenceError, RecordNotFoundError
from rune.graph import KnowledgeGraph, merge_extraction, find_unresolved_entities
from rune.models import (
    Entity,
    EntityCandidate,
    EntityType,
    ExtractionResult,
    Relationship,
    RelationshipCandidate,
)


def make_extraction(entities=(), relationships=()):
    """Build an extraction result from (name, type[, description]) and (from, to, type) tuples."""
    return ExtractionResult(
        entities=[
            EntityCandidate(name=entry[0], entity_type=entry[1], description=entry[2] if len(entry) > 2 else "")
            for entry in entities
        ],
        relationships=[
            RelationshipCandidate(from_name=source, to_name=target, relationship_type=kind)
            for source, target, kind in relationships
        ]
    )


class GraphTestCase(unittest.TestCase):
    """Base fixture with an in-memory database and one book."""

    def setUp(self):
        """Set up test fixtures."""
        self.db = DatabaseManager(":memory:")
        self.db.connect()
        self.db.initialize_database()
        self.graph = KnowledgeGraph(self.db)
        self.book_id = self.db.create_book("My Grandmother's War").id

    def tearDown(self):
        """Clean up test fixtures."""
        self.db.disconnect()


class TestEntityStore(GraphTestCase):
    """Test entity and relationship storage."""

    def test_add_and_get_entity(self):
        """Test an entity round-trips through the database."""
        entity = self.graph.add_entity(
            self.book_id, EntityType.PERSON, "Maria", "The grandmother",
            {"born": 1931}, session_id="s1"
        )

        stored = self.graph.get_entity(entity.id)
        self.assertEqual(stored.name, "Maria")
        self.assertEqual(stored.description, "The grandmother")
        self.assertEqual(stored.attributes, {"born": 1931})
        self.assertEqual(stored.mention_count, 1)
        self.assertEqual(stored.first_mentioned_session, "s1")
        self.assertIsNone(self.graph.get_entity("missing"))

    def test_add_entity_requires_existing_book(self):
        """Test entities cannot be created for a book that does not exist."""
        with self.assertRaises(RecordNotFoundError):
            self.graph.add_entity("no-such-book", EntityType.PERSON, "Maria")

        self.assertEqual(self.graph.get_entities("no-such-book"), [])

    def test_merge_into_unknown_book_writes_nothing(self):
        """Test every entity write fails in isolation for an unknown book."""
        result = merge_extraction(
            self.graph, "no-such-book",
            make_extraction([("Maria", "person")], [("Maria", "Maria", "self")])
        )

        self.assertEqual(result.entities, [])
        self.assertEqual(len(result.skipped_relationships), 1)

    def test_entities_ordered_by_mention_count_then_insertion(self):
        """Test listing order is most mentioned first with stable ties."""
        first = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        second = self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon")
        third = self.graph.add_entity(self.book_id, EntityType.THEME, "Exile")

        self.graph.increment_mention_count(second.id)
        self.graph.increment_mention_count(second.id)

        names = [entity.name for entity in self.graph.get_entities(self.book_id)]
        self.assertEqual(names, ["Lisbon", "Maria", "Exile"])
        self.assertEqual(self.graph.get_entity(second.id).mention_count, 3)
        self.assertEqual(self.graph.get_entity(first.id).mention_count, 1)
        self.assertEqual(self.graph.get_entity(third.id).mention_count, 1)

    def test_entities_filtered_by_type_and_book(self):
        """Test type filter and book scoping."""
        other_book = self.db.create_book("Other").id
        self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon")
        self.graph.add_entity(other_book, EntityType.PERSON, "Jonas")

        people = self.graph.get_entities(self.book_id, EntityType.PERSON)
        self.assertEqual([entity.name for entity in people], ["Maria"])
        self.assertEqual(len(self.graph.get_entities(self.book_id)), 2)
        self.assertEqual(len(self.graph.get_entities(other_book)), 1)

    def test_update_entity(self):
        """Test partial updates."""
        entity = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")

        updated = self.graph.update_entity(entity.id, description="Grandmother", attributes={"age": 90})

        self.assertEqual(updated.description, "Grandmother")
        self.assertEqual(updated.attributes, {"age": 90})
        self.assertEqual(updated.name, "Maria")

    def test_update_entity_errors(self):
        """Test unknown fields and missing entities are rejected."""
        entity = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")

        with self.assertRaises(ValueError):
            self.graph.update_entity(entity.id, mention_count=10)
        with self.assertRaises(RecordNotFoundError):
            self.graph.update_entity("missing", description="x")

    def test_increment_missing_entity(self):
        """Test incrementing an unknown entity fails."""
        with self.assertRaises(RecordNotFoundError):
            self.graph.increment_mention_count("missing")

    def test_relationships_in_both_directions(self):
        """Test querying edges where the entity is source or target."""
        maria = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        lisbon = self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon")
        war = self.graph.add_entity(self.book_id, EntityType.EVENT, "The War")

        lived = self.graph.add_relationship(self.book_id, maria.id, lisbon.id, "lived_in")
        fled = self.graph.add_relationship(self.book_id, war.id, maria.id, "displaced")
        self.graph.add_relationship(self.book_id, war.id, lisbon.id, "reached")

        edges = self.graph.get_relationships(self.book_id, maria.id)
        self.assertEqual([edge.id for edge in edges], [lived.id, fled.id])
        self.assertEqual(len(self.graph.get_relationships(self.book_id)), 3)

    def test_self_loop_listed_once(self):
        """Test an edge touching the entity at both ends is not duplicated."""
        maria = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        self.graph.add_relationship(self.book_id, maria.id, maria.id, "reflects_on")

        self.assertEqual(len(self.graph.get_relationships(self.book_id, maria.id)), 1)

    def test_duplicate_relationships_allowed(self):
        """Test the same edge can be recorded twice."""
        maria = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        lisbon = self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon")

        self.graph.add_relationship(self.book_id, maria.id, lisbon.id, "lived_in")
        self.graph.add_relationship(self.book_id, maria.id, lisbon.id, "lived_in")

        self.assertEqual(len(self.graph.get_relationships(self.book_id)), 2)

    def test_relationship_endpoints_must_share_book(self):
        """Test edges cannot cross books or point at missing entities."""
        other_book = self.db.create_book("Other").id
        maria = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        jonas = self.graph.add_entity(other_book, EntityType.PERSON, "Jonas")

        with self.assertRaises(PersistenceError):
            self.graph.add_relationship(self.book_id, maria.id, jonas.id, "knows")
        with self.assertRaises(PersistenceError):
            self.graph.add_relationship(self.book_id, maria.id, "missing", "knows")

        self.assertEqual(self.graph.get_relationships(self.book_id), [])

    def test_entity_network(self):
        """Test the full network contains every entity and edge."""
        maria = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        lisbon = self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon")
        self.graph.add_relationship(self.book_id, maria.id, lisbon.id, "lived_in")

        network = self.graph.get_entity_network(self.book_id)
        self.assertEqual(len(network.entities), 2)
        self.assertEqual(len(network.relationships), 1)


class TestUnresolvedDetection(GraphTestCase):
    """Test detection of entities that need follow-up."""

    def test_find_unresolved(self):
        """Test blank descriptions and missing relationships are both flagged."""
        resolved = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria", "Grandmother")
        lisbon = self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon", "Capital city")
        blank = self.graph.add_entity(self.book_id, EntityType.PERSON, "Tomas")
        lonely = self.graph.add_entity(self.book_id, EntityType.THEME, "Exile", "Leaving home")
        self.graph.add_relationship(self.book_id, resolved.id, lisbon.id, "lived_in")
        self.graph.add_relationship(self.book_id, blank.id, resolved.id, "brother_of")

        unresolved = self.graph.find_unresolved(self.book_id)

        self.assertEqual({entity.id for entity in unresolved}, {blank.id, lonely.id})

    def test_whitespace_description_counts_as_blank(self):
        """Test a whitespace-only description is treated as empty."""
        entity = Entity(id="a", book_id="b", entity_type="person", name="Maria", description="   ")
        other = Entity(id="c", book_id="b", entity_type="place", name="Lisbon", description="City")
        edge = Relationship(id="r", book_id="b", from_entity_id="a", to_entity_id="c", relationship_type="x")

        self.assertEqual(find_unresolved_entities([entity, other], [edge]), [entity])

    def test_order_preserved_and_no_duplicates(self):
        """Test an entity failing both checks appears once, in input order."""
        entities = [
            Entity(id=str(index), book_id="b", entity_type="person", name=f"P{index}")
            for index in range(3)
        ]

        self.assertEqual(find_unresolved_entities(entities, []), entities)

    def test_empty_graph(self):
        """Test an empty graph has nothing unresolved."""
        self.assertEqual(self.graph.find_unresolved(self.book_id), [])


class TestMergeExtraction(GraphTestCase):
    """Test merging extraction output into the graph."""

    def test_new_entities_and_relationships(self):
        """Test a first extraction creates entities and edges."""
        extraction = make_extraction(
            [("Maria", "person", "The grandmother"), ("Lisbon", "place")],
            [("Maria", "Lisbon", "lived_in")]
        )

        result = merge_extraction(self.graph, self.book_id, extraction, session_id="s1")

        self.assertEqual(len(result.new_entities), 2)
        self.assertEqual(len(result.relationships), 1)
        self.assertEqual(result.skipped_relationships, [])
        maria = self.graph.get_entity(result.entities[0].entity.id)
        self.assertEqual(maria.first_mentioned_session, "s1")

    def test_remention_increments_instead_of_duplicating(self):
        """Test a name seen again, in any case or spacing, is a re-mention."""
        merge_extraction(self.graph, self.book_id, make_extraction([("Maria Lopez", "person")]))

        result = merge_extraction(
            self.graph, self.book_id, make_extraction([("  maria   LOPEZ", "person", "A seamstress")])
        )

        entities = self.graph.get_entities(self.book_id)
        self.assertEqual(len(entities), 1)
        self.assertEqual(entities[0].mention_count, 2)
        self.assertEqual(entities[0].name, "Maria Lopez")
        self.assertEqual(entities[0].description, "A seamstress")
        self.assertFalse(result.entities[0].is_new)

    def test_remention_keeps_existing_description(self):
        """Test a known description is not overwritten."""
        merge_extraction(self.graph, self.book_id, make_extraction([("Maria", "person", "Grandmother")]))
        merge_extraction(self.graph, self.book_id, make_extraction([("Maria", "person", "Someone else")]))

        self.assertEqual(self.graph.get_entities(self.book_id)[0].description, "Grandmother")

    def test_dangling_relationship_skipped(self):
        """Test edges to unknown names are skipped without failing the batch."""
        extraction = make_extraction(
            [("Maria", "person"), ("Lisbon", "place")],
            [("Maria", "Ghost", "haunted_by"), ("Maria", "lisbon", "lived_in")]
        )

        result = merge_extraction(self.graph, self.book_id, extraction)

        self.assertEqual(len(result.relationships), 1)
        self.assertEqual([edge.to_name for edge in result.skipped_relationships], ["Ghost"])
        self.assertEqual(len(self.graph.get_relationships(self.book_id)), 1)

    def test_relationship_to_existing_entity(self):
        """Test edges resolve against entities from earlier merges."""
        merge_extraction(self.graph, self.book_id, make_extraction([("Maria", "person")]))

        result = merge_extraction(
            self.graph, self.book_id,
            make_extraction([("Lisbon", "place")], [("Maria", "Lisbon", "lived_in")])
        )

        self.assertEqual(len(result.relationships), 1)

    def test_failed_edge_does_not_abort_others(self):
        """Test a persistence failure on one edge leaves the rest written."""
        extraction = make_extraction(
            [("Maria", "person"), ("Lisbon", "place"), ("Porto", "place")],
            [("Maria", "Lisbon", "lived_in"), ("Maria", "Porto", "born_in")]
        )
        real_add = self.graph.add_relationship

        def flaky_add(book_id, from_id, to_id, relationship_type, description=None):
            if relationship_type == "lived_in":
                raise PersistenceError("disk full")
            return real_add(book_id, from_id, to_id, relationship_type, description)

        with patch.object(self.graph, "add_relationship", side_effect=flaky_add):
            result = merge_extraction(self.graph, self.book_id, extraction)

        self.assertEqual([edge.relationship_type for edge in result.relationships], ["born_in"])
        self.assertEqual(len(self.graph.get_entities(self.book_id)), 3)
        self.assertEqual(len(self.graph.get_relationships(self.book_id)), 1)

    def test_failed_entity_does_not_abort_others(self):
        """Test a persistence failure on one entity leaves the rest written."""
        real_add = self.graph.add_entity

        def flaky_add(book_id, entity_type, name, *args):
            if name == "Maria":
                raise PersistenceError("disk full")
            return real_add(book_id, entity_type, name, *args)

        with patch.object(self.graph, "add_entity", side_effect=flaky_add):
            result = merge_extraction(
                self.graph, self.book_id,
                make_extraction([("Maria", "person"), ("Lisbon", "place")], [("Maria", "Lisbon", "lived_in")])
            )

        self.assertEqual([merged.entity.name for merged in result.entities], ["Lisbon"])
        self.assertEqual(len(result.skipped_relationships), 1)

    def test_empty_extraction(self):
        """Test an empty extraction changes nothing."""
        result = merge_extraction(self.graph, self.book_id, ExtractionResult())

        self.assertEqual(result.entities, [])
        self.assertEqual(self.graph.get_entities(self.book_id), [])


if __name__ == '__main__':
    unittest.main()
