"""
Tests for the backlog store, priority scoring and next-item selection.
"""

import unittest

from rune.backlog import BacklogManager, calculate_priority, TYPE_WEIGHTS
from rune.backlog.priority import age_bonus
from rune.database import DatabaseManager
from rune.errors import PersistenceError, RecordNotFoundError
from rune.graph import KnowledgeGraph
from rune.models import BacklogItem, BacklogItemType, BacklogStatus, EntityType, Room


def make_item(item_type="question", priority=1, source_entity_id=None):
    return BacklogItem(
        id="item", book_id="book", item_type=item_type, content="Follow up",
        priority=priority, source_entity_id=source_entity_id
    )


class TestPriorityScoring(unittest.TestCase):
    """Test the effective score formula."""

    def test_type_weights(self):
        """Test the fixed adjustment for every item type."""
        expected = {
            "contradiction": 2,
            "thin_spot": 1,
            "question": 0,
            "review": 0,
            "idea": -1,
            "unexplored": -1,
        }
        for item_type, weight in expected.items():
            with self.subTest(item_type=item_type):
                self.assertEqual(calculate_priority(make_item(item_type, priority=3), 0), 3 + weight)

        self.assertEqual(set(TYPE_WEIGHTS), set(BacklogItemType))

    def test_age_bonus_steps_every_three_sessions(self):
        """Test the age bonus is the session count divided by three, rounded down."""
        self.assertEqual([age_bonus(count) for count in range(7)], [0, 0, 0, 1, 1, 1, 2])

    def test_three_more_sessions_add_one_point(self):
        """Test the score grows by one for every three sessions."""
        item = make_item("question", priority=2)
        for count in (0, 1, 4, 10):
            with self.subTest(session_count=count):
                self.assertEqual(
                    calculate_priority(item, count + 3), calculate_priority(item, count) + 1
                )

    def test_idea_to_contradiction_adds_three(self):
        """Test retyping an idea as a contradiction raises the score by three."""
        idea = make_item("idea", priority=2)
        contradiction = make_item("contradiction", priority=2)

        self.assertEqual(calculate_priority(contradiction, 5), calculate_priority(idea, 5) + 3)

    def test_finish_bonus_requires_drafts_and_entity(self):
        """Test entity-linked items gain two points once drafts exist."""
        linked = make_item("thin_spot", priority=3, source_entity_id="maria")
        unlinked = make_item("thin_spot", priority=3)

        self.assertEqual(calculate_priority(linked, 0, has_drafts=True), 6)
        self.assertEqual(calculate_priority(linked, 0, has_drafts=False), 4)
        self.assertEqual(calculate_priority(unlinked, 0, has_drafts=True), 4)

    def test_score_is_not_clamped(self):
        """Test low scores are allowed to reach zero."""
        self.assertEqual(calculate_priority(make_item("idea", priority=1), 0), 0)

    def test_scoring_is_deterministic(self):
        """Test the same inputs always give the same score."""
        item = make_item("contradiction", priority=4, source_entity_id="e")
        scores = {calculate_priority(item, 7, True) for _ in range(5)}
        self.assertEqual(scores, {4 + 2 + 2 + 2})


class BacklogTestCase(unittest.TestCase):
    """Base fixture with an in-memory database and one book."""

    def setUp(self):
        """Set up test fixtures."""
        self.db = DatabaseManager(":memory:")
        self.db.connect()
        self.db.initialize_database()
        self.backlog = BacklogManager(self.db)
        self.graph = KnowledgeGraph(self.db)
        self.book_id = self.db.create_book("My Grandmother's War").id

    def tearDown(self):
        """Clean up test fixtures."""
        self.db.disconnect()

    def add_sessions(self, count):
        for _ in range(count):
            self.db.add_session(self.book_id, "transcript")


class TestBacklogStore(BacklogTestCase):
    """Test backlog item storage and lifecycle."""

    def test_add_item_defaults(self):
        """Test a new item is open with the default priority."""
        item = self.backlog.add_backlog_item(self.book_id, BacklogItemType.QUESTION, "  Where was Maria born?  ")

        stored = self.backlog.get_backlog_item(item.id)
        self.assertEqual(stored.status, BacklogStatus.OPEN)
        self.assertEqual(stored.priority, 1)
        self.assertEqual(stored.content, "Where was Maria born?")
        self.assertIsNone(stored.addressed_at)

    def test_add_item_validation(self):
        """Test out-of-range priorities and empty content are rejected."""
        for priority in (0, 6):
            with self.assertRaises(ValueError):
                self.backlog.add_backlog_item(self.book_id, "question", "Who?", priority=priority)
        with self.assertRaises(ValueError):
            self.backlog.add_backlog_item(self.book_id, "question", "   ")
        with self.assertRaises(ValueError):
            self.backlog.add_backlog_item(self.book_id, "homework", "Who?")

        self.assertEqual(self.backlog.get_backlog_items(self.book_id), [])

    def test_listing_order_and_filters(self):
        """Test items list by priority then insertion order, with filters."""
        low = self.backlog.add_backlog_item(self.book_id, "question", "Low", priority=1)
        high = self.backlog.add_backlog_item(self.book_id, "idea", "High", priority=4)
        also_low = self.backlog.add_backlog_item(self.book_id, "question", "Also low", priority=1)

        listed = [item.id for item in self.backlog.get_backlog_items(self.book_id)]
        self.assertEqual(listed, [high.id, low.id, also_low.id])

        questions = self.backlog.get_backlog_items(self.book_id, item_type=BacklogItemType.QUESTION)
        self.assertEqual([item.id for item in questions], [low.id, also_low.id])

        self.backlog.dismiss_item(low.id)
        open_items = self.backlog.get_backlog_items(self.book_id, status=BacklogStatus.OPEN)
        self.assertEqual([item.id for item in open_items], [high.id, also_low.id])

    def test_address_item(self):
        """Test addressing sets the status and timestamp."""
        item = self.backlog.add_backlog_item(self.book_id, "question", "Who?")

        addressed = self.backlog.address_item(item.id)

        self.assertEqual(addressed.status, BacklogStatus.ADDRESSED)
        self.assertIsNotNone(addressed.addressed_at)

    def test_terminal_states_do_not_change(self):
        """Test closing a closed item is a no-op."""
        item = self.backlog.add_backlog_item(self.book_id, "question", "Who?")
        dismissed = self.backlog.dismiss_item(item.id)

        again = self.backlog.address_item(item.id)

        self.assertEqual(again.status, BacklogStatus.DISMISSED)
        self.assertEqual(again.addressed_at, dismissed.addressed_at)

    def test_close_missing_item(self):
        """Test closing an unknown item fails."""
        with self.assertRaises(RecordNotFoundError):
            self.backlog.address_item("missing")
        with self.assertRaises(RecordNotFoundError):
            self.backlog.dismiss_item("missing")

    def test_open_items_for_entity(self):
        """Test looking up open items linked to an entity."""
        maria = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        linked = self.backlog.add_backlog_item(self.book_id, "thin_spot", "Maria?", source_entity_id=maria.id)
        self.backlog.add_backlog_item(self.book_id, "question", "Unlinked")

        self.assertEqual([item.id for item in self.backlog.open_items_for_entity(self.book_id, maria.id)],
                         [linked.id])

        self.backlog.address_item(linked.id)
        self.assertEqual(self.backlog.open_items_for_entity(self.book_id, maria.id), [])

    def test_add_item_requires_existing_book(self):
        """Test items cannot be added to a book that does not exist."""
        with self.assertRaises(RecordNotFoundError):
            self.backlog.add_backlog_item("no-such-book", "question", "Who?")

    def test_source_entity_must_belong_to_book(self):
        """Test entities from other books or unknown ids are rejected as sources."""
        other_book = self.db.create_book("Another Life").id
        stranger = self.graph.add_entity(other_book, EntityType.PERSON, "Joao")

        with self.assertRaises(PersistenceError):
            self.backlog.add_backlog_item(self.book_id, "question", "Joao?", source_entity_id=stranger.id)
        with self.assertRaises(PersistenceError):
            self.backlog.add_backlog_item(self.book_id, "question", "Who?", source_entity_id="ghost")

        self.assertEqual(self.backlog.get_backlog_items(self.book_id), [])

    def test_source_session_must_belong_to_book(self):
        """Test sessions from other books or unknown ids are rejected as sources."""
        other_book = self.db.create_book("Another Life").id
        session = self.db.add_session(other_book, "transcript")

        with self.assertRaises(PersistenceError):
            self.backlog.add_backlog_item(self.book_id, "question", "Who?", source_session_id=session.id)
        with self.assertRaises(PersistenceError):
            self.backlog.add_backlog_item(self.book_id, "question", "Who?", source_session_id="ghost")

        own = self.db.add_session(self.book_id, "transcript")
        item = self.backlog.add_backlog_item(self.book_id, "question", "Who?", source_session_id=own.id)
        self.assertEqual(self.backlog.get_backlog_item(item.id).source_session_id, own.id)


class TestNextItemSelection(BacklogTestCase):
    """Test choosing the next item to talk about."""

    def test_no_items(self):
        """Test an empty backlog has no next item."""
        self.assertIsNone(self.backlog.get_next_item(self.book_id))

    def test_only_closed_items(self):
        """Test closed items are never selected."""
        item = self.backlog.add_backlog_item(self.book_id, "contradiction", "Dates differ", priority=5)
        self.backlog.address_item(item.id)

        self.assertIsNone(self.backlog.get_next_item(self.book_id))

    def test_type_weight_beats_base_priority(self):
        """Test the effective score, not the stored priority, decides."""
        self.backlog.add_backlog_item(self.book_id, "idea", "A prologue", priority=3)
        contradiction = self.backlog.add_backlog_item(
            self.book_id, "contradiction", "Born in 1931 or 1933?", priority=2
        )

        self.assertEqual(self.backlog.get_next_item(self.book_id).id, contradiction.id)

    def test_tie_goes_to_first_listed(self):
        """Test equal scores resolve to the item the store lists first."""
        first = self.backlog.add_backlog_item(self.book_id, "question", "First", priority=2)
        self.backlog.add_backlog_item(self.book_id, "question", "Second", priority=2)

        for _ in range(3):
            self.assertEqual(self.backlog.get_next_item(self.book_id).id, first.id)

    def test_drafts_promote_entity_items(self):
        """Test the finish bonus changes the selection once drafts exist."""
        lisbon = self.graph.add_entity(self.book_id, EntityType.PLACE, "Lisbon")
        question = self.backlog.add_backlog_item(self.book_id, "question", "Any regrets?", priority=3)
        linked = self.backlog.add_backlog_item(
            self.book_id, "unexplored", "Tell me about Lisbon", priority=3, source_entity_id=lisbon.id
        )

        self.assertEqual(self.backlog.get_next_item(self.book_id).id, question.id)

        self.db.add_workspace_file(self.book_id, Room.DRAFTS, "chapters", "Chapter 1", "Text")
        self.assertEqual(self.backlog.get_next_item(self.book_id).id, linked.id)

    def test_foreign_entity_links_never_reach_selection(self):
        """Test only items linked to the book's own entities earn the finish bonus."""
        other_book = self.db.create_book("Another Life").id
        stranger = self.graph.add_entity(other_book, EntityType.PERSON, "Joao")
        own = self.graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        self.db.add_workspace_file(self.book_id, Room.DRAFTS, "chapters", "Chapter 1", "Text")

        plain = self.backlog.add_backlog_item(self.book_id, "question", "Plain", priority=3)
        for source in (stranger.id, "ghost"):
            with self.assertRaises(PersistenceError):
                self.backlog.add_backlog_item(self.book_id, "question", "Linked", priority=3, source_entity_id=source)

        self.assertEqual(self.backlog.get_next_item(self.book_id).id, plain.id)

        linked = self.backlog.add_backlog_item(self.book_id, "question", "Maria", priority=3, source_entity_id=own.id)
        self.assertEqual(self.backlog.get_next_item(self.book_id).id, linked.id)

    def test_grandmother_memoir_scenario(self):
        """Test the thin spot and idea tie at six and the idea wins on listing order."""
        graph = KnowledgeGraph(self.db)
        maria = graph.add_entity(self.book_id, EntityType.PERSON, "Maria")
        graph.increment_mention_count(maria.id)
        graph.increment_mention_count(maria.id)
        self.add_sessions(6)

        unresolved = graph.find_unresolved(self.book_id)
        self.assertEqual([entity.name for entity in unresolved], ["Maria"])
        self.assertEqual(unresolved[0].mention_count, 3)

        idea = self.backlog.add_backlog_item(self.book_id, "idea", "Open with the train station", priority=5)
        thin_spot = self.backlog.add_backlog_item(
            self.book_id, "thin_spot", "Maria's backstory is unclear", priority=3
        )

        self.assertEqual(calculate_priority(thin_spot, 6, False), 6)
        self.assertEqual(calculate_priority(idea, 6, False), 6)

        listed = self.backlog.get_backlog_items(self.book_id, status=BacklogStatus.OPEN)
        self.assertEqual([item.id for item in listed], [idea.id, thin_spot.id])
        self.assertEqual(self.backlog.get_next_item(self.book_id).id, idea.id)


if __name__ == '__main__':
    unittest.main()
