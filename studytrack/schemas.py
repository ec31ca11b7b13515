"""
Pydantic models for studytrack documents.

These models define the structure of the documents kept in the document
store (items, subjects, history, achievements and focus sessions).
Documents are written with model_dump(mode="json") and read back with
model_validate, so every timestamp round-trips as an ISO 8601 string.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from studytrack.constants import COMPLETED


class Difficulty(str, Enum):
    """Self-reported difficulty of an item (display only)."""
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"


class AchievementType(str, Enum):
    """Kind of work recorded in the achievement log."""
    STUDY = "study"  # Spaced-repetition item completed
    TASK = "task"    # One-off task completed


NextReview = Optional[Union[datetime, Literal["COMPLETED"]]]


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def item_id_for(subject: str, ordinal: int) -> str:
    """Composite item id "<subject>_<ordinal>"."""
    return f"{subject}_{ordinal}"


def normalize_subject_code(code: str) -> str:
    """Upper-case a subject code and drop anything that is not A-Z or 0-9."""
    return re.sub(r"[^A-Z0-9]", "", (code or "").upper())


# ---- Configuration ----

class Subject(BaseModel):
    """A subject and the number of ordinal items it contains."""
    code: str = Field(..., description="Normalised subject code, e.g. ANA")
    display_name: str = Field(default="", description="Human readable name")
    total_item_count: int = Field(default=0, ge=0, description="Items per subject")
    theme: str = Field(default="indigo", description="Display theme key")

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        code = normalize_subject_code(value)
        if not code:
            raise ValueError("Subject code must contain at least one letter or digit")
        return code


# ---- Reviewable unit ----

class Item(BaseModel):
    """
    A reviewable unit identified by subject + ordinal.

    A missing record is equivalent to Item(subject, ordinal) with stage 0.
    """
    id: str = ""
    subject: str
    ordinal: int = Field(..., ge=1)
    stage: int = Field(default=0, ge=0)
    last_studied_at: Optional[datetime] = None
    next_review_at: NextReview = None
    is_completed: bool = False
    is_recurring: bool = True

    # Metadata (no scheduling effect)
    title: str = ""
    description: str = ""
    difficulty: Difficulty = Difficulty.NORMAL

    @field_validator("next_review_at", mode="before")
    @classmethod
    def _blank_means_unscheduled(cls, value):
        # Older documents stored "" for a reset item
        if value == "":
            return None
        return value

    @field_validator("last_studied_at", "next_review_at")
    @classmethod
    def _to_utc(cls, value):
        if isinstance(value, datetime):
            return _ensure_utc(value)
        return value

    @model_validator(mode="after")
    def _default_id(self) -> "Item":
        if not self.id:
            self.id = item_id_for(self.subject, self.ordinal)
        return self

    @property
    def is_scheduled(self) -> bool:
        """True when next_review_at holds a real timestamp."""
        return isinstance(self.next_review_at, datetime)

    @property
    def is_new(self) -> bool:
        return self.stage == 0

    def is_finished(self) -> bool:
        return self.is_completed or self.next_review_at == COMPLETED


# ---- Logs ----

class HistoryEntry(BaseModel):
    """Immutable record of one completion event."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    item_id: str
    subject: str
    ordinal: int
    title_snapshot: str = ""
    completed_at: datetime
    stage_completed: int = Field(..., ge=0, description="Stage before the increment")

    @field_validator("completed_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class AchievementEntry(BaseModel):
    """One entry in a day's achievement log; extra payload keys are kept."""
    model_config = ConfigDict(extra="allow")

    id: str
    type: AchievementType
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class AchievementDayLog(BaseModel):
    """All achievements of one calendar day (UTC)."""
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    items: list[AchievementEntry] = Field(default_factory=list)

    def count(self, achievement_type: AchievementType) -> int:
        return sum(1 for entry in self.items if entry.type == achievement_type)


# ---- Session ----

class FocusSession(BaseModel):
    """
    The persisted, cross-device focus session for one subsystem tag.

    The queue holds item snapshots, not references.
    """
    type: str
    start_time: datetime
    is_free: bool = False
    queue: list[Item] = Field(default_factory=list)

    @field_validator("start_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)
