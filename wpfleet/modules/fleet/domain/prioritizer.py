from typing import Sequence

from wpfleet.modules.fleet.domain.types import (
    ItemType,
    PendingUpdate,
    PrioritizedUpdate,
    Priority,
)

PRIORITY_SCORES = {
    Priority.CRITICAL: 100,
    Priority.HIGH: 75,
    Priority.MEDIUM: 50,
    Priority.LOW: 25,
}


def classify_update(update: PendingUpdate) -> Priority:
    """First matching rule wins."""
    if update.is_security_update:
        return Priority.CRITICAL
    if update.item_type == ItemType.PLUGIN and update.is_active:
        return Priority.HIGH
    if update.item_type == ItemType.THEME and update.is_active:
        return Priority.MEDIUM
    return Priority.LOW


def prioritize_updates(updates: Sequence[PendingUpdate]) -> list[PrioritizedUpdate]:
    """
    Classify pending updates and order them by score, highest first.
    Python's sort is stable, so equal scores keep their input order.
    """
    prioritized = []
    for update in updates:
        priority = classify_update(update)
        prioritized.append(
            PrioritizedUpdate(
                **update.model_dump(),
                priority=priority,
                score=PRIORITY_SCORES[priority],
            )
        )
    return sorted(prioritized, key=lambda u: u.score, reverse=True)
