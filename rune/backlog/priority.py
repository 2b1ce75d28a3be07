"""
Priority scoring for backlog items.

The effective score of an item is

    base priority + age bonus + type weight + finish bonus

and is computed on read, never stored.

The age bonus uses the number of sessions the whole book has had, not the
number of sessions since the item was created: items do not record the
session number they were created in, so every open item ages together.
"""

from typing import Dict

from ..models import BacklogItem, BacklogItemType


SESSIONS_PER_AGE_POINT = 3
FINISH_BONUS = 2

# Fixed per-type adjustment added to the base priority
TYPE_WEIGHTS: Dict[BacklogItemType, int] = {
    BacklogItemType.CONTRADICTION: 2,
    BacklogItemType.THIN_SPOT: 1,
    BacklogItemType.QUESTION: 0,
    BacklogItemType.REVIEW: 0,
    BacklogItemType.IDEA: -1,
    BacklogItemType.UNEXPLORED: -1,
}


def age_bonus(session_count: int) -> int:
    """One point per three sessions recorded for the book."""
    return session_count // SESSIONS_PER_AGE_POINT


def type_weight(item_type: BacklogItemType) -> int:
    return TYPE_WEIGHTS.get(BacklogItemType(item_type), 0)


def finish_bonus(item: BacklogItem, has_drafts: bool) -> int:
    """Entity-linked items jump the queue once the book has drafts."""
    return FINISH_BONUS if has_drafts and item.source_entity_id else 0


def calculate_priority(item: BacklogItem, session_count: int, has_drafts: bool = False) -> int:
    """
    Calculate the effective priority of a backlog item.

    The result is not clamped; zero and negative scores are valid and rank low.

    Args:
        item: The backlog item to score
        session_count: Number of sessions recorded for the item's book
        has_drafts: Whether the book has any file in its drafts room

    Returns:
        The effective score
    """
    return (
        item.priority
        + age_bonus(session_count)
        + type_weight(item.item_type)
        + finish_bonus(item, has_drafts)
    )
