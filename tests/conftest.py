from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from studytrack.errors import TransientStoreError
from studytrack.schemas import Subject
from studytrack.store import MemoryDocumentStore

USER = "u1"
NOW = datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)


class FlakyStore(MemoryDocumentStore):
    """Memory store that fails chosen operations a set number of times."""

    def __init__(self):
        super().__init__()
        self.failures: dict[tuple[str, str], int] = {}

    def fail(self, op: str, path_part: str, times: int = 1) -> None:
        self.failures[(op, path_part)] = times

    def _maybe_fail(self, op: str, path: str) -> None:
        for (fail_op, part), remaining in self.failures.items():
            if fail_op == op and part in path and remaining > 0:
                self.failures[(fail_op, part)] = remaining - 1
                raise TransientStoreError(f"simulated {op} failure for {path}")

    def set(self, path, document, merge=False):
        self._maybe_fail("set", path)
        super().set(path, document, merge)

    def delete(self, path):
        self._maybe_fail("delete", path)
        super().delete(path)

    def atomic_append(self, path, field, entry, defaults=None):
        self._maybe_fail("append", path)
        super().atomic_append(path, field, entry, defaults)


class Clock:
    """Settable clock for coordinators and services."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def sql_store():
    from studytrack.store.sql import SqlDocumentStore

    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    store = SqlDocumentStore(engine)
    yield store
    store.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def subjects():
    return [
        Subject(code="ANA", display_name="Anatomy", total_item_count=20),
        Subject(code="PHY", display_name="Physiology", total_item_count=3),
    ]
