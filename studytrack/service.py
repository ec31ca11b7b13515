"""
Service layer exposing studytrack operations to collaborators.

StudyTracker binds a store, a user and a session type together and is
the entry point for UI, calendar and maintenance code. Reads go to the
store on every call rather than being cached, so each caller sees the
latest persisted state.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pandas as pd
from loguru import logger

from studytrack import analytics, config, item_repo, log_repo, subject_repo
from studytrack.constants import DEFAULT_SEED_COUNT
from studytrack.scheduling import (
    IntervalTable,
    end_of_day,
    manual_set_stage,
    select_due_items,
    select_new_suggestions,
    subject_items,
    subject_stats,
)
from studytrack.schemas import AchievementDayLog, FocusSession, HistoryEntry, Item, Subject, item_id_for
from studytrack.session import CompletionResult, SessionCoordinator, SessionSnapshot
from studytrack.store import DocumentStore, Unsubscribe, create_store


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StudyTracker:
    """
    Collaborator-facing facade over scheduling, logs and sessions.
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        user_id: Optional[str] = None,
        session_type: Optional[str] = None,
        table: Optional[IntervalTable] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.store = store or create_store()
        self.user_id = user_id or config.get_default_user_id()
        self.table = table or IntervalTable.from_env()
        self._clock = clock
        self.session = SessionCoordinator(
            self.store,
            user_id=self.user_id,
            session_type=session_type,
            table=self.table,
            clock=clock,
        )

    # ---- Subjects ----

    def get_subjects(self) -> list[Subject]:
        return subject_repo.list_subjects(self.store, self.user_id)

    def add_subject(
        self,
        code: str,
        display_name: str = "",
        total_item_count: int = 0,
        theme: str = "indigo",
        editing: bool = False
    ) -> Subject:
        subject = Subject(
            code=code,
            display_name=display_name,
            total_item_count=total_item_count,
            theme=theme,
        )
        return subject_repo.save_subject(self.store, self.user_id, subject, editing=editing)

    def set_subject_total(self, code: str, total: int) -> Subject:
        return subject_repo.set_total_item_count(self.store, self.user_id, code, total)

    def delete_subject(self, code: str) -> None:
        subject_repo.delete_subject(self.store, self.user_id, code)

    # ---- Work selection ----

    def get_due_items(self, now: Optional[datetime] = None) -> list[Item]:
        """Items due by the end of today (UTC), earliest first."""
        now = now or self._clock()
        return select_due_items(item_repo.list_items(self.store, self.user_id), end_of_day(now))

    def get_new_suggestions(self) -> list[Item]:
        """The first unstarted item of every subject."""
        return select_new_suggestions(
            self.get_subjects(),
            item_repo.list_items(self.store, self.user_id)
        )

    def get_subject_items(self, code: str) -> list[Item]:
        subject = subject_repo.require_subject(self.store, self.user_id, code)
        return subject_items(subject, item_repo.list_items(self.store, self.user_id))

    def get_subject_stats(self, code: str) -> dict[str, int]:
        subject = subject_repo.require_subject(self.store, self.user_id, code)
        return subject_stats(subject, item_repo.list_items(self.store, self.user_id))

    # ---- Session ----

    def build_queue_add(self, item: Item) -> bool:
        return self.session.add_to_building_queue(item)

    def build_queue_remove(self, item_id: str) -> bool:
        return self.session.remove_from_building_queue(item_id)

    def start_session(self, is_free: bool = False) -> FocusSession:
        return self.session.start_session(is_free)

    def complete_item(self, item: Item) -> CompletionResult:
        return self.session.complete_item(item)

    def close_session(self) -> None:
        self.session.close_session()

    def subscribe_session(self, callback: Callable[[SessionSnapshot], None]) -> Unsubscribe:
        return self.session.subscribe(callback)

    # ---- Logs ----

    def get_history(self, limit: Optional[int] = None) -> list[HistoryEntry]:
        return log_repo.get_history(self.store, self.user_id, limit)

    def get_month_achievements(self, year: int, month: int) -> dict[str, AchievementDayLog]:
        return log_repo.get_month_achievements(self.store, self.user_id, year, month)

    def month_summary(self, year: int, month: int) -> pd.DataFrame:
        """Per-day study/task/total counts for the achievement calendar."""
        return analytics.month_summary(self.get_month_achievements(year, month), year, month)

    # ---- Maintenance ----

    def reset_subject(self, code: str) -> int:
        """Delete every stored item of a subject; returns how many."""
        return item_repo.reset_subject(self.store, self.user_id, code)

    def manual_set_stage(self, subject: str, ordinal: int, stage: int) -> Item:
        """
        Correct an item's stage by hand. Creates the record if missing.
        """
        current = item_repo.get_item(self.store, self.user_id, subject, ordinal)
        updated = manual_set_stage(current, stage, self._clock(), self.table)
        item_repo.save_item(self.store, self.user_id, updated)
        logger.info(f"Manual stage update {updated.id}: {current.stage} -> {updated.stage}")
        return updated

    def mark_first_items_due(self, count: int = DEFAULT_SEED_COUNT) -> int:
        """
        Put the first `count` unstarted items of every subject into today's
        reviews, as if their first study was one stage-1 interval ago.

        Returns:
            Number of items written
        """
        now = self._clock()
        studied_at = now - timedelta(days=self.table.offset_for_stage(1))
        items = item_repo.list_items(self.store, self.user_id)

        written = 0
        for subject in self.get_subjects():
            for ordinal in range(1, min(count, subject.total_item_count) + 1):
                stored = items.get(item_id_for(subject.code, ordinal))
                if stored is not None and stored.stage >= 1:
                    continue
                base = stored or Item(subject=subject.code, ordinal=ordinal)
                seeded = base.model_copy(update={
                    "stage": 1,
                    "last_studied_at": studied_at,
                    "next_review_at": now,
                    "is_completed": False,
                })
                item_repo.save_item(self.store, self.user_id, seeded)
                written += 1

        logger.info(f"Marked {written} items as due today")
        return written
