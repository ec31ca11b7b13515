"""
Selection - choosing due items and new suggestions.

Pure filters over item snapshots (no store calls). The due cutoff is the
end of the current UTC day, so anything scheduled for "today" is due all
day regardless of the hour.

Selection mixes two pools:
- Due items (scheduled and not completed) - earliest first
- New suggestions (first unstarted ordinal per subject) - at most one each
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Iterable, Mapping, Optional, Union

from studytrack.schemas import Item, Subject, item_id_for

ItemsArg = Union[Mapping[str, Item], Iterable[Item]]


def _as_map(items: ItemsArg) -> dict[str, Item]:
    if isinstance(items, Mapping):
        return dict(items)
    return {item.id: item for item in items}


# ---- Day boundaries ----

def end_of_day(now: Optional[datetime] = None) -> datetime:
    """
    Last representable instant of now's UTC calendar day.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    day = now.astimezone(timezone.utc).date()
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def date_key(moment: Optional[datetime] = None) -> str:
    """YYYY-MM-DD of the moment's UTC calendar day."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date().isoformat()


# ---- Due items ----

def select_due_items(items: ItemsArg, as_of: datetime) -> list[Item]:
    """
    Items whose review has arrived, earliest first.

    Completed items and items without a real timestamp are skipped. The
    subject configuration is not consulted: an item beyond a shrunken
    total_item_count is still due if it was scheduled.

    Args:
        items: Item snapshots (list or id -> Item map)
        as_of: Cutoff, usually end_of_day(now)

    Returns:
        Due items sorted by (next_review_at, id)
    """
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    due = [
        item for item in _as_map(items).values()
        if not item.is_completed
        and item.is_scheduled
        and item.next_review_at <= as_of
    ]
    due.sort(key=lambda item: (item.next_review_at, item.id))
    return due


# ---- New suggestions ----

def select_new_suggestions(
    subjects: Iterable[Subject],
    items: ItemsArg
) -> list[Item]:
    """
    First not-yet-started item of every subject.

    Scans ordinals 1..total_item_count in order and stops at the first one
    that has no record or is at stage 0. Subjects with every ordinal
    started (or no ordinals at all) contribute nothing.
    """
    item_map = _as_map(items)
    suggestions: list[Item] = []

    for subject in subjects:
        for ordinal in range(1, subject.total_item_count + 1):
            stored = item_map.get(item_id_for(subject.code, ordinal))
            if stored is None:
                suggestions.append(Item(subject=subject.code, ordinal=ordinal))
                break
            if stored.stage == 0:
                suggestions.append(stored.model_copy(update={
                    "stage": 0,
                    "last_studied_at": None,
                    "next_review_at": None,
                    "is_completed": False,
                }))
                break

    return suggestions


# ---- Per-subject views ----

def subject_items(subject: Subject, items: ItemsArg) -> list[Item]:
    """
    Every ordinal of a subject, stored state or defaults for missing ones.
    """
    item_map = _as_map(items)
    return [
        item_map.get(item_id_for(subject.code, ordinal))
        or Item(subject=subject.code, ordinal=ordinal)
        for ordinal in range(1, subject.total_item_count + 1)
    ]


def subject_stats(subject: Subject, items: ItemsArg) -> dict[str, int]:
    """
    Progress counts for a subject.

    Returns:
        Dict with total (configured ordinals), started (stored items with
        stage > 0, any ordinal) and new (total - started, floored at 0)
    """
    started = sum(
        1 for item in _as_map(items).values()
        if item.subject == subject.code and item.stage > 0
    )
    total = subject.total_item_count
    return {
        "total": total,
        "started": started,
        "new": max(0, total - started),
    }
