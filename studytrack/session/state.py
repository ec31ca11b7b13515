"""
Session state types shared by the coordinator and its subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from studytrack.schemas import AchievementEntry, HistoryEntry, Item


class SessionPhase(str, Enum):
    """Lifecycle of a focus session on one client."""
    IDLE = "idle"          # No session
    BUILDING = "building"  # Local queue only, invisible to other clients
    ACTIVE = "active"      # Persisted and visible to every subscriber


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Read-only view of a client's session state, handed to subscribers.
    """
    phase: SessionPhase
    session_type: str
    queue: tuple[Item, ...] = ()
    is_free: bool = False
    start_time: Optional[datetime] = None
    pending_sync: bool = False  # A local change is not yet durable

    @property
    def is_active(self) -> bool:
        return self.phase == SessionPhase.ACTIVE

    @property
    def queue_ids(self) -> list[str]:
        return [item.id for item in self.queue]


@dataclass(frozen=True)
class CompletionResult:
    """
    Outcome of completing one queued item.

    item is None when a one-off task was deleted; history_entry and
    achievement are None when that log write failed (logged, not raised).
    """
    completed_id: str
    item: Optional[Item]
    history_entry: Optional[HistoryEntry]
    achievement: Optional[AchievementEntry]
    remaining: int
    session_closed: bool
