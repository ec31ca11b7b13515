"""
Session lifecycle coordination.

A focus session moves IDLE -> BUILDING -> ACTIVE -> IDLE:
- BUILDING: the queue lives only in this client
- ACTIVE: the whole session is persisted at sessions/{type} and every
  client subscribed to that document renders from it
- closing (or completing the last item of a non-free session) deletes it

Conflicts between clients are last-write-wins on the whole document. On
every subscription push the remote document replaces local state.
"""

from __future__ import annotations

import threading
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from loguru import logger
from pydantic import ValidationError

from studytrack import config, item_repo, log_repo
from studytrack.errors import InvariantViolation, SessionSyncError, TransientStoreError
from studytrack.scheduling import DEFAULT_TABLE, IntervalTable, advance_stage, date_key
from studytrack.schemas import AchievementType, FocusSession, HistoryEntry, Item
from studytrack.session.state import CompletionResult, SessionPhase, SessionSnapshot
from studytrack.store import DocumentStore, Unsubscribe
from studytrack.store import paths

SessionListener = Callable[[SessionSnapshot], None]
Clock = Callable[[], datetime]

_DELETE = object()  # Pending write marker: the session document must be removed


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionCoordinator:
    """
    Owns one client's view of the (user, session_type) focus session.

    All public methods serialise on a re-entrant lock, so operations of one
    client apply in call order even when subscription pushes arrive on a
    background thread. Pushes are queued and applied once the lock is free,
    so a push never waits on this client's lock while its writer holds its
    own.
    """

    def __init__(
        self,
        store: DocumentStore,
        user_id: Optional[str] = None,
        session_type: Optional[str] = None,
        table: IntervalTable = DEFAULT_TABLE,
        clock: Clock = _utc_now,
        persist_retries: Optional[int] = None
    ):
        self._store = store
        self.user_id = user_id or config.get_default_user_id()
        self.session_type = session_type or config.get_session_type()
        self._table = table
        self._clock = clock
        if persist_retries is None:
            persist_retries = config.get_persist_retries()
        if persist_retries < 1:
            raise ValueError(f"persist_retries must be >= 1, got {persist_retries}")
        self._persist_retries = persist_retries
        self._path = paths.session_path(self.user_id, self.session_type)

        self._lock = threading.RLock()
        self._phase = SessionPhase.IDLE
        self._queue: list[Item] = []
        self._is_free = False
        self._start_time: Optional[datetime] = None
        self._pending = None  # FocusSession to write, _DELETE, or None

        self._listeners: list[SessionListener] = []
        self._store_unsubscribe: Optional[Unsubscribe] = None
        self._inbox: deque = deque()  # Remote documents not yet applied
        self._depth = 0  # Nesting of lock-holding operations

    # ---- State ----

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def queue(self) -> tuple[Item, ...]:
        with self._locked():
            return tuple(self._queue)

    @property
    def is_free(self) -> bool:
        return self._is_free

    def snapshot(self) -> SessionSnapshot:
        with self._locked():
            return SessionSnapshot(
                phase=self._phase,
                session_type=self.session_type,
                queue=tuple(self._queue),
                is_free=self._is_free,
                start_time=self._start_time,
                pending_sync=self._pending is not None,
            )

    # ---- Building ----

    def add_to_building_queue(self, item: Item) -> bool:
        """
        Add an item to the local queue.

        Returns:
            True if added, False if the id was already queued
        """
        with self._locked():
            if self._phase == SessionPhase.ACTIVE:
                raise InvariantViolation("Cannot change the queue of an active session")
            if any(queued.id == item.id for queued in self._queue):
                return False
            self._queue.append(item)
            self._phase = SessionPhase.BUILDING
            self._emit()
            return True

    def remove_from_building_queue(self, item_id: str) -> bool:
        """
        Remove an item from the local queue; an emptied queue returns to IDLE.
        """
        with self._locked():
            if self._phase == SessionPhase.ACTIVE:
                raise InvariantViolation("Cannot change the queue of an active session")
            before = len(self._queue)
            self._queue = [queued for queued in self._queue if queued.id != item_id]
            if len(self._queue) == before:
                return False
            if not self._queue:
                self._phase = SessionPhase.IDLE
            self._emit()
            return True

    # ---- Lifecycle ----

    def start_session(self, is_free: bool = False) -> FocusSession:
        """
        Persist the session, making it visible to every client.

        A free session carries no items and ends only on close_session().
        A stale document of the same type that this client never adopted
        is overwritten.
        """
        with self._locked():
            if self._phase == SessionPhase.ACTIVE:
                raise InvariantViolation(
                    f"A '{self.session_type}' session is already active; close it first"
                )
            if not is_free and not self._queue:
                raise InvariantViolation("Cannot start a session with an empty queue")

            session = FocusSession(
                type=self.session_type,
                start_time=self._clock(),
                is_free=is_free,
                queue=[] if is_free else list(self._queue),
            )
            self._store.set(self._path, session.model_dump(mode="json"))

            logger.info(
                f"Started {'free ' if is_free else ''}'{self.session_type}' session "
                f"with {len(session.queue)} items"
            )
            self._adopt(session)
            self._emit()
            return session

    def complete_item(self, item: Item, now: Optional[datetime] = None) -> CompletionResult:
        """
        Complete a queued item.

        1. Recurring items advance one stage and get a history entry;
           one-off tasks are deleted.
        2. An achievement is logged for today.
        3. The item leaves the queue and the session is re-persisted.
        4. A non-free session whose queue empties is closed.

        Failures before step 3 propagate with nothing applied. History and
        achievement write failures are logged and skipped. A session write
        that still fails after retries raises SessionSyncError carrying the
        result; the local queue keeps the removal.
        """
        with self._locked():
            if self._phase != SessionPhase.ACTIVE:
                raise InvariantViolation("No active session to complete items in")
            if not any(queued.id == item.id for queued in self._queue):
                raise InvariantViolation(f"Item {item.id} is not in the session queue")

            now = now or self._clock()
            updated: Optional[Item] = None
            history: Optional[HistoryEntry] = None

            if item.is_recurring:
                current = item_repo.get_or_default(self._store, self.user_id, item)
                updated = advance_stage(current, now, self._table)
                item_repo.save_item(self._store, self.user_id, updated)
                history = self._record_history(current, now)
                achievement_type = AchievementType.STUDY
                payload = {"stage_completed": current.stage}
            else:
                item_repo.delete_item(self._store, self.user_id, item.id)
                achievement_type = AchievementType.TASK
                payload = {}

            achievement = self._record_achievement(achievement_type, item, now, payload)

            self._queue = [queued for queued in self._queue if queued.id != item.id]
            closed = not self._queue and not self._is_free
            if closed:
                self._reset_local()
                self._pending = _DELETE
                logger.info(f"'{self.session_type}' session finished: queue empty")
            else:
                self._pending = self._current_session()
            self._emit()

            result = CompletionResult(
                completed_id=item.id,
                item=updated,
                history_entry=history,
                achievement=achievement,
                remaining=len(self._queue),
                session_closed=closed,
            )
            try:
                self._flush_pending()
            except SessionSyncError as exc:
                exc.result = result
                raise
            return result

    def close_session(self) -> None:
        """
        End the session on every client. Safe to call when idle.
        """
        with self._locked():
            was = self._phase
            self._reset_local()
            if was == SessionPhase.IDLE:
                return
            if was == SessionPhase.ACTIVE:
                self._pending = _DELETE
            logger.info(f"Closed '{self.session_type}' session")
            self._emit()
            self._flush_pending()

    def resync(self) -> bool:
        """
        Retry a session write that failed earlier.

        Returns:
            True if a pending write was flushed, False if nothing was pending
        """
        with self._locked():
            if self._pending is None:
                return False
            self._flush_pending()
            self._emit()
            return True

    # ---- Remote state ----

    def subscribe(self, callback: Optional[SessionListener] = None) -> Unsubscribe:
        """
        Follow the persisted session document.

        The first push adopts any existing session of this type (resume
        after reload or on another device). The callback receives a
        SessionSnapshot after every applied change.
        """
        with self._locked():
            if callback is not None:
                self._listeners.append(callback)
            if self._store_unsubscribe is None:
                self._store_unsubscribe = self._store.subscribe(self._path, self._on_remote_change)
            elif callback is not None:
                callback(self.snapshot())

        def unsubscribe() -> None:
            with self._locked():
                if callback is not None and callback in self._listeners:
                    self._listeners.remove(callback)
                if not self._listeners and self._store_unsubscribe is not None:
                    self._store_unsubscribe()
                    self._store_unsubscribe = None

        return unsubscribe

    def resume(self) -> SessionSnapshot:
        """
        Fetch the persisted session once and adopt it (no subscription).
        """
        doc = self._store.get(self._path)
        self._on_remote_change(doc)
        return self.snapshot()

    def _on_remote_change(self, doc: Optional[dict]) -> None:
        # Never blocks the writer: another client's write can arrive on a
        # thread that holds that client's lock while this one is busy
        self._inbox.append(doc)
        self._drain()

    def _drain(self) -> None:
        """
        Apply queued remote documents in arrival order.

        Whoever holds the lock (another thread, or this one mid-operation)
        drains when its outermost operation releases it.
        """
        while self._inbox:
            if not self._lock.acquire(blocking=False):
                return
            try:
                if self._depth:
                    return
                self._depth += 1
                try:
                    while self._inbox:
                        self._apply_remote(self._inbox.popleft())
                finally:
                    self._depth -= 1
            finally:
                self._lock.release()

    def _apply_remote(self, doc: Optional[dict]) -> None:
        with self._lock:
            if doc is None:
                if self._phase != SessionPhase.ACTIVE or self._pending is not None:
                    return
                logger.info(f"'{self.session_type}' session closed on another client")
                self._reset_local()
                self._emit()
                return

            try:
                session = FocusSession.model_validate(doc)
            except ValidationError as exc:
                logger.warning(f"Ignoring malformed session document at {self._path}: {exc}")
                return
            if session.type != self.session_type:
                return

            # Last write wins: a remote document supersedes an unsent local one
            if self._pending is not None:
                logger.warning(f"Discarding unsynced local change for {self._path}")
                self._pending = None
            elif self._is_current(session):
                return  # Echo of a state already applied here
            self._adopt(session)
            self._emit()

    # ---- Helpers ----

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            with self._lock:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
        finally:
            self._drain()

    def _adopt(self, session: FocusSession) -> None:
        self._phase = SessionPhase.ACTIVE
        self._is_free = session.is_free
        self._start_time = session.start_time
        if [q.model_dump() for q in self._queue] != [q.model_dump() for q in session.queue]:
            self._queue = list(session.queue)

    def _is_current(self, session: FocusSession) -> bool:
        return (
            self._phase == SessionPhase.ACTIVE
            and self._start_time == session.start_time
            and self._is_free == session.is_free
            and [q.model_dump() for q in self._queue] == [q.model_dump() for q in session.queue]
        )

    def _reset_local(self) -> None:
        self._phase = SessionPhase.IDLE
        self._queue = []
        self._is_free = False
        self._start_time = None
        self._pending = None

    def _current_session(self) -> FocusSession:
        return FocusSession(
            type=self.session_type,
            start_time=self._start_time or self._clock(),
            is_free=self._is_free,
            queue=list(self._queue),
        )

    def _flush_pending(self) -> None:
        pending = self._pending
        if pending is None:
            return

        # Cleared up front so the echo of our own write is seen as current
        self._pending = None
        last_error: Optional[TransientStoreError] = None
        for attempt in range(1, self._persist_retries + 1):
            try:
                if pending is _DELETE:
                    self._store.delete(self._path)
                else:
                    self._store.set(self._path, pending.model_dump(mode="json"))
            except TransientStoreError as exc:
                last_error = exc
                logger.warning(
                    f"Session write attempt {attempt}/{self._persist_retries} "
                    f"for {self._path} failed: {exc}"
                )
                continue
            return

        self._pending = pending
        raise SessionSyncError(
            f"Session {self._path} not saved after {self._persist_retries} attempts; "
            f"call resync() to retry"
        ) from last_error

    def _record_history(self, current: Item, now: datetime) -> Optional[HistoryEntry]:
        entry = HistoryEntry(
            item_id=current.id,
            subject=current.subject,
            ordinal=current.ordinal,
            title_snapshot=current.title,
            completed_at=now,
            stage_completed=current.stage,
        )
        try:
            return log_repo.append_history(self._store, self.user_id, entry)
        except TransientStoreError as exc:
            logger.error(f"History append failed for {current.id}: {exc}")
            return None

    def _record_achievement(
        self,
        achievement_type: AchievementType,
        item: Item,
        now: datetime,
        payload: dict
    ):
        entry = log_repo.new_achievement(
            achievement_type,
            now,
            item_id=item.id,
            subject=item.subject,
            ordinal=item.ordinal,
            title=item.title,
            **payload
        )
        try:
            return log_repo.log_achievement(self._store, self.user_id, date_key(now), entry)
        except TransientStoreError as exc:
            logger.error(f"Achievement log failed for {item.id}: {exc}")
            return None

    def _emit(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener raised")
