import threading
from datetime import timedelta

import pytest

from conftest import NOW, USER, Clock
from studytrack import item_repo, log_repo
from studytrack.constants import COMPLETED
from studytrack.errors import InvariantViolation, SessionSyncError, TransientStoreError
from studytrack.schemas import AchievementType, Item
from studytrack.session import SessionCoordinator, SessionPhase
from studytrack.store import paths

SESSION_PATH = paths.session_path(USER, "study")


def _coordinator(store, session_type="study"):
    return SessionCoordinator(
        store,
        user_id=USER,
        session_type=session_type,
        clock=Clock(),
        persist_retries=3,
    )


def _items(*ordinals, subject="ANA"):
    return [Item(subject=subject, ordinal=n, title=f"Lecture {n}") for n in ordinals]


def _started(store, *ordinals, is_free=False):
    coordinator = _coordinator(store)
    for item in _items(*ordinals):
        coordinator.add_to_building_queue(item)
    coordinator.start_session(is_free)
    return coordinator


# ---- Building ----

def test_building_queue_is_local_and_deduplicated(store):
    coordinator = _coordinator(store)
    first, second = _items(1, 2)

    assert coordinator.add_to_building_queue(first)
    assert not coordinator.add_to_building_queue(Item(subject="ANA", ordinal=1))
    assert coordinator.add_to_building_queue(second)

    assert coordinator.phase == SessionPhase.BUILDING
    assert [item.id for item in coordinator.queue] == ["ANA_1", "ANA_2"]
    assert store.get(SESSION_PATH) is None


def test_emptied_building_queue_returns_to_idle(store):
    coordinator = _coordinator(store)
    coordinator.add_to_building_queue(_items(1)[0])

    assert coordinator.remove_from_building_queue("ANA_1")
    assert not coordinator.remove_from_building_queue("ANA_1")
    assert coordinator.phase == SessionPhase.IDLE


def test_start_requires_items_unless_free(store):
    coordinator = _coordinator(store)
    with pytest.raises(InvariantViolation):
        coordinator.start_session()

    session = coordinator.start_session(is_free=True)

    assert session.is_free
    assert session.queue == []
    assert coordinator.phase == SessionPhase.ACTIVE
    assert store.get(SESSION_PATH)["is_free"] is True


def test_start_persists_queue(store):
    coordinator = _started(store, 1, 2)

    doc = store.get(SESSION_PATH)

    assert doc["type"] == "study"
    assert [entry["id"] for entry in doc["queue"]] == ["ANA_1", "ANA_2"]
    assert coordinator.snapshot().is_active


def test_active_session_blocks_queue_edits_and_restart(store):
    coordinator = _started(store, 1)

    with pytest.raises(InvariantViolation):
        coordinator.add_to_building_queue(_items(2)[0])
    with pytest.raises(InvariantViolation):
        coordinator.remove_from_building_queue("ANA_1")
    with pytest.raises(InvariantViolation):
        coordinator.start_session()


# ---- Completion ----

def test_complete_item_advances_and_logs(store):
    coordinator = _started(store, 1, 2)
    first = coordinator.queue[0]

    result = coordinator.complete_item(first)

    assert result.completed_id == "ANA_1"
    assert result.item.stage == 1
    assert result.item.next_review_at == NOW + timedelta(days=1)
    assert result.remaining == 1
    assert not result.session_closed

    stored = item_repo.load_item(store, USER, "ANA_1")
    assert stored.stage == 1
    assert stored.title == "Lecture 1"

    history = log_repo.get_history(store, USER)
    assert len(history) == 1
    assert history[0].stage_completed == 0
    assert history[0].title_snapshot == "Lecture 1"

    day = log_repo.get_day_achievements(store, USER, "2024-03-10")
    assert day.count(AchievementType.STUDY) == 1
    assert day.items[0].model_extra["stage_completed"] == 0

    assert [entry["id"] for entry in store.get(SESSION_PATH)["queue"]] == ["ANA_2"]


def test_completion_uses_stored_stage_not_snapshot(store):
    item_repo.save_item(store, USER, Item(subject="ANA", ordinal=1, stage=2, next_review_at=NOW))
    coordinator = _started(store, 1)

    result = coordinator.complete_item(coordinator.queue[0])

    assert result.item.stage == 3
    assert result.history_entry.stage_completed == 2


def test_completing_last_item_closes_session(store):
    coordinator = _started(store, 1)

    result = coordinator.complete_item(coordinator.queue[0])

    assert result.session_closed
    assert result.remaining == 0
    assert coordinator.phase == SessionPhase.IDLE
    assert store.get(SESSION_PATH) is None


def test_completing_final_stage_marks_item_completed(store):
    item_repo.save_item(store, USER, Item(subject="ANA", ordinal=1, stage=4, next_review_at=NOW))
    coordinator = _started(store, 1)

    result = coordinator.complete_item(coordinator.queue[0])

    assert result.item.is_completed
    assert result.item.next_review_at == COMPLETED


def test_one_off_task_is_deleted(store):
    task = Item(subject="TODO", ordinal=1, title="Buy stethoscope", is_recurring=False)
    item_repo.save_item(store, USER, task)
    coordinator = _coordinator(store)
    coordinator.add_to_building_queue(task)
    coordinator.start_session()

    result = coordinator.complete_item(task)

    assert result.item is None
    assert result.history_entry is None
    assert result.achievement.type == AchievementType.TASK
    assert item_repo.load_item(store, USER, "TODO_1") is None
    assert log_repo.get_history(store, USER) == []


def test_free_session_stays_open_until_closed(store):
    coordinator = _started(store, is_free=True)
    assert coordinator.phase == SessionPhase.ACTIVE

    coordinator.close_session()

    assert coordinator.phase == SessionPhase.IDLE
    assert store.get(SESSION_PATH) is None
    coordinator.close_session()  # idle close is a no-op


def test_complete_rejects_unqueued_or_inactive(store):
    coordinator = _coordinator(store)
    with pytest.raises(InvariantViolation):
        coordinator.complete_item(_items(1)[0])

    coordinator = _started(store, 1)
    with pytest.raises(InvariantViolation):
        coordinator.complete_item(_items(9)[0])


def test_close_while_building_discards_queue(store):
    coordinator = _coordinator(store)
    coordinator.add_to_building_queue(_items(1)[0])

    coordinator.close_session()

    assert coordinator.phase == SessionPhase.IDLE
    assert coordinator.queue == ()


# ---- Listeners ----

def test_listener_receives_snapshots(store):
    coordinator = _coordinator(store)
    seen = []
    unsubscribe = coordinator.subscribe(seen.append)

    coordinator.add_to_building_queue(_items(1)[0])
    coordinator.start_session()
    coordinator.complete_item(coordinator.queue[0])
    unsubscribe()

    phases = [snapshot.phase for snapshot in seen]
    assert phases[0] == SessionPhase.BUILDING
    assert SessionPhase.ACTIVE in phases
    assert phases[-1] == SessionPhase.IDLE


def test_broken_listener_does_not_break_coordinator(store):
    coordinator = _coordinator(store)

    def broken(_snapshot):
        raise RuntimeError("boom")

    coordinator.subscribe(broken)
    assert coordinator.add_to_building_queue(_items(1)[0])


# ---- Cross-client sync ----

def test_second_client_follows_session(store):
    laptop = _coordinator(store)
    phone = _coordinator(store)
    laptop.subscribe()
    phone.subscribe()

    for item in _items(1, 2):
        laptop.add_to_building_queue(item)
    assert phone.phase == SessionPhase.IDLE

    laptop.start_session()
    assert phone.phase == SessionPhase.ACTIVE
    assert phone.snapshot().queue_ids == ["ANA_1", "ANA_2"]

    phone.complete_item(phone.queue[0])
    assert laptop.snapshot().queue_ids == ["ANA_2"]

    laptop.complete_item(laptop.queue[0])
    assert phone.phase == SessionPhase.IDLE
    assert laptop.phase == SessionPhase.IDLE
    assert item_repo.load_item(store, USER, "ANA_1").stage == 1
    assert item_repo.load_item(store, USER, "ANA_2").stage == 1


def test_close_on_one_client_closes_everywhere(store):
    laptop = _coordinator(store)
    phone = _coordinator(store)
    laptop.subscribe()
    phone.subscribe()
    laptop.start_session(is_free=True)
    assert phone.is_free

    phone.close_session()

    assert laptop.phase == SessionPhase.IDLE


def test_resume_adopts_existing_session(store):
    _started(store, 1, 2)

    reloaded = _coordinator(store)
    snapshot = reloaded.resume()

    assert snapshot.is_active
    assert snapshot.queue_ids == ["ANA_1", "ANA_2"]


def test_subscription_adopts_existing_session(store):
    _started(store, 3)
    reloaded = _coordinator(store)

    reloaded.subscribe()

    assert reloaded.snapshot().queue_ids == ["ANA_3"]


def test_session_types_are_independent(store):
    _started(store, 1)
    other = _coordinator(store, session_type="tasks")
    other.subscribe()

    assert other.phase == SessionPhase.IDLE


def test_malformed_remote_document_is_ignored(store):
    coordinator = _coordinator(store)
    coordinator.subscribe()

    store.set(SESSION_PATH, {"type": "study", "queue": "nonsense"})

    assert coordinator.phase == SessionPhase.IDLE


# ---- Failures ----

def test_item_save_failure_applies_nothing(flaky_store):
    coordinator = _started(flaky_store, 1, 2)
    flaky_store.fail("set", "/items/")

    with pytest.raises(TransientStoreError):
        coordinator.complete_item(coordinator.queue[0])

    assert coordinator.snapshot().queue_ids == ["ANA_1", "ANA_2"]
    assert log_repo.get_history(flaky_store, USER) == []


def test_log_failures_do_not_block_completion(flaky_store):
    coordinator = _started(flaky_store, 1, 2)
    flaky_store.fail("set", "/history/")
    flaky_store.fail("append", "/achievements/")

    result = coordinator.complete_item(coordinator.queue[0])

    assert result.item.stage == 1
    assert result.history_entry is None
    assert result.achievement is None
    assert result.remaining == 1


def test_session_write_failure_is_retried(flaky_store):
    coordinator = _started(flaky_store, 1, 2)
    flaky_store.fail("set", "/sessions/", times=2)

    result = coordinator.complete_item(coordinator.queue[0])

    assert result.remaining == 1
    assert not coordinator.snapshot().pending_sync
    assert len(flaky_store.get(SESSION_PATH)["queue"]) == 1


def test_session_sync_error_then_resync(flaky_store):
    coordinator = _started(flaky_store, 1, 2)
    flaky_store.fail("set", "/sessions/", times=3)

    with pytest.raises(SessionSyncError) as exc_info:
        coordinator.complete_item(coordinator.queue[0])

    assert exc_info.value.result.completed_id == "ANA_1"
    assert coordinator.snapshot().pending_sync
    assert coordinator.snapshot().queue_ids == ["ANA_2"]
    assert len(flaky_store.get(SESSION_PATH)["queue"]) == 2

    assert coordinator.resync()
    assert not coordinator.snapshot().pending_sync
    assert len(flaky_store.get(SESSION_PATH)["queue"]) == 1
    assert not coordinator.resync()


def test_failed_close_keeps_delete_pending(flaky_store):
    coordinator = _started(flaky_store, is_free=True)
    flaky_store.fail("delete", "/sessions/", times=3)

    with pytest.raises(SessionSyncError):
        coordinator.close_session()

    assert coordinator.phase == SessionPhase.IDLE
    assert flaky_store.get(SESSION_PATH) is not None

    coordinator.resync()
    assert flaky_store.get(SESSION_PATH) is None


def test_three_item_session_closes_after_third(store):
    coordinator = _started(store, 1, 2, 3)

    results = [coordinator.complete_item(coordinator.queue[0]) for _ in range(3)]

    assert [result.session_closed for result in results] == [False, False, True]
    assert [result.remaining for result in results] == [2, 1, 0]
    assert store.get(SESSION_PATH) is None


# ---- Concurrency and construction ----

def test_start_session_emits_active_once(store):
    coordinator = _coordinator(store)
    seen = []
    coordinator.subscribe(seen.append)

    coordinator.add_to_building_queue(_items(1)[0])
    coordinator.start_session()

    assert [snapshot.phase for snapshot in seen].count(SessionPhase.ACTIVE) == 1


def test_persist_retries_must_be_positive(store):
    with pytest.raises(ValueError):
        SessionCoordinator(store, user_id=USER, persist_retries=0)


@pytest.mark.parametrize("store_fixture", ["store", "sql_store"])
def test_clients_on_separate_threads_do_not_deadlock(request, store_fixture):
    store = request.getfixturevalue(store_fixture)
    laptop = _coordinator(store)
    phone = _coordinator(store)
    laptop.subscribe()
    phone.subscribe()
    for item in _items(1, 2, 3):
        laptop.add_to_building_queue(item)
    laptop.start_session()

    laptop_busy = threading.Event()
    phone_done = threading.Event()

    # Holds the laptop inside complete_item until the phone has written
    def hold_laptop(snapshot):
        if len(snapshot.queue) == 2 and not laptop_busy.is_set():
            laptop_busy.set()
            phone_done.wait(5)

    laptop.subscribe(hold_laptop)

    def complete_on_laptop():
        laptop.complete_item(laptop.queue[0])

    def complete_on_phone():
        laptop_busy.wait(5)
        phone.complete_item(phone.queue[-1])
        phone_done.set()

    threads = [
        threading.Thread(target=complete_on_laptop, daemon=True),
        threading.Thread(target=complete_on_phone, daemon=True),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert not any(thread.is_alive() for thread in threads)
    assert phone_done.is_set()
    stored = [entry["id"] for entry in store.get(SESSION_PATH)["queue"]]
    assert stored == ["ANA_2", "ANA_3"]
    assert laptop.snapshot().queue_ids == stored
    assert phone.snapshot().queue_ids == stored
