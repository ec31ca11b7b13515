"""
Document-store repository for history and achievement logs.

Both logs are append-only:
- history: one document per completion event (audit trail)
- achievements: one document per UTC calendar day holding an ordered
  list of entries, read back by day or by month
"""

from __future__ import annotations

import calendar
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger

from studytrack.schemas import AchievementDayLog, AchievementEntry, AchievementType, HistoryEntry
from studytrack.store import DocumentStore
from studytrack.store import paths


# ---- History ----

def append_history(store: DocumentStore, user_id: str, entry: HistoryEntry) -> HistoryEntry:
    """
    Append a completion event to the history log.

    No deduplication: callers must record each completion exactly once.
    """
    store.set(paths.history_entry_path(user_id, entry.id), entry.model_dump(mode="json"))
    return entry


def get_history(store: DocumentStore, user_id: str, limit: Optional[int] = None) -> list[HistoryEntry]:
    """
    Get completion history.

    Args:
        limit: Maximum number of entries to return (None for all)

    Returns:
        Entries ordered by completed_at, newest first
    """
    docs = store.list_documents(paths.history_path(user_id))
    entries = [HistoryEntry.model_validate(doc) for doc in docs.values()]
    entries.sort(key=lambda e: (e.completed_at, e.id), reverse=True)
    if limit is not None:
        return entries[:limit]
    return entries


# ---- Achievements ----

def new_achievement(
    achievement_type: AchievementType,
    now: Optional[datetime] = None,
    **payload: Any
) -> AchievementEntry:
    """
    Build an achievement entry with a unique "<type>_<epoch_ms>_<suffix>" id.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    achievement_type = AchievementType(achievement_type)
    entry_id = f"{achievement_type.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
    return AchievementEntry(id=entry_id, type=achievement_type, timestamp=now, **payload)


def log_achievement(
    store: DocumentStore,
    user_id: str,
    day: str,
    entry: AchievementEntry
) -> AchievementEntry:
    """
    Append an entry to a day's achievement log, creating the day on first use.

    Uses the store's atomic append when available. Otherwise falls back to
    read-modify-write, where two concurrent writers can lose an entry.
    """
    path = paths.achievement_day_path(user_id, day)
    payload = entry.model_dump(mode="json")

    if store.supports_atomic_append:
        store.atomic_append(path, "items", payload, defaults={"date": day})
        return entry

    current = store.get(path)
    if current is None:
        store.set(path, {"date": day, "items": [payload]})
    else:
        items = list(current.get("items") or [])
        items.append(payload)
        store.set(path, {"items": items}, merge=True)
    return entry


def get_day_achievements(store: DocumentStore, user_id: str, day: str) -> Optional[AchievementDayLog]:
    doc = store.get(paths.achievement_day_path(user_id, day))
    if doc is None:
        return None
    return AchievementDayLog.model_validate({"date": day, **doc})


def get_month_achievements(
    store: DocumentStore,
    user_id: str,
    year: int,
    month: int
) -> dict[str, AchievementDayLog]:
    """
    Get achievements for every day of a month.

    Args:
        year: Calendar year
        month: Month number, 1-12

    Returns:
        Map of YYYY-MM-DD -> day log; days without achievements are omitted
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")

    days_in_month = calendar.monthrange(year, month)[1]
    achievements: dict[str, AchievementDayLog] = {}
    for day in range(1, days_in_month + 1):
        key = f"{year:04d}-{month:02d}-{day:02d}"
        log = get_day_achievements(store, user_id, key)
        if log is not None:
            achievements[key] = log

    logger.debug(f"Loaded {len(achievements)} achievement days for {year}-{month:02d}")
    return achievements
