"""
Scheduling Engine - stage progression and work selection.

Everything here is pure: functions take item snapshots and a clock value
and return new items or lists. Store I/O lives in the repositories.

Quick start:
    from studytrack import scheduling

    item = scheduling.advance_stage(item, now)
    due = scheduling.select_due_items(items, scheduling.end_of_day(now))
"""

from studytrack.scheduling.intervals import DEFAULT_TABLE, IntervalTable
from studytrack.scheduling.scheduler import advance_stage, manual_set_stage
from studytrack.scheduling.selection import (
    date_key,
    end_of_day,
    select_due_items,
    select_new_suggestions,
    subject_items,
    subject_stats,
)

__all__ = [
    "DEFAULT_TABLE",
    "IntervalTable",
    "advance_stage",
    "manual_set_stage",
    "date_key",
    "end_of_day",
    "select_due_items",
    "select_new_suggestions",
    "subject_items",
    "subject_stats",
]
