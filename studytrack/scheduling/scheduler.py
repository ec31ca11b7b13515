"""
Scheduler - stage progression logic.

Pure stage/interval updates (no store calls).

Main workflow:
1. Load the item (caller's responsibility, missing record == stage 0)
2. Compute the next stage
3. Look the stage up in the interval table
4. Return an updated copy of the item

The caller persists the result and, for a completion, records the
HistoryEntry with stage_completed = the stage before the increment.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from studytrack.constants import COMPLETED
from studytrack.scheduling.intervals import DEFAULT_TABLE, IntervalTable
from studytrack.schemas import Item


def advance_stage(
    item: Item,
    now: Optional[datetime] = None,
    table: IntervalTable = DEFAULT_TABLE
) -> Item:
    """
    Advance an item by one stage after a successful completion.

    Args:
        item: Item to advance (stage 0 for a never studied item)
        now: Completion timestamp (defaults to now, UTC)
        table: Interval table to schedule against

    Returns:
        New Item with stage + 1; the input is not modified
    """
    return _schedule(item, item.stage + 1, now, table)


def manual_set_stage(
    item: Item,
    new_stage: int,
    now: Optional[datetime] = None,
    table: IntervalTable = DEFAULT_TABLE
) -> Item:
    """
    Set an item's stage directly (manual correction, not a completion).

    Stage 0 is a full reset: last_studied_at, next_review_at and
    is_completed are cleared but the record is kept.
    """
    if new_stage < 0:
        raise ValueError(f"Stage must be >= 0, got {new_stage}")

    if new_stage == 0:
        return item.model_copy(update={
            "stage": 0,
            "last_studied_at": None,
            "next_review_at": None,
            "is_completed": False,
        })

    return _schedule(item, new_stage, now, table)


def _schedule(
    item: Item,
    stage: int,
    now: Optional[datetime],
    table: IntervalTable
) -> Item:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    offset = table.offset_for_stage(stage)
    if offset is None:
        # Beyond the table: the item is done for good
        return item.model_copy(update={
            "stage": stage,
            "last_studied_at": now,
            "next_review_at": COMPLETED,
            "is_completed": True,
        })

    return item.model_copy(update={
        "stage": stage,
        "last_studied_at": now,
        "next_review_at": now + timedelta(days=offset),
        "is_completed": False,
    })
