"""
SQL document store.

Keeps documents as JSON rows via SQLAlchemy (Postgres in production,
SQLite for tests). SQL has no push notifications, so subscriptions are
in-process: every store built on the same engine shares one listener
registry and is notified after each committed write.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional

from loguru import logger
from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from studytrack import config
from studytrack.errors import TransientStoreError
from studytrack.store.base import Document, DocumentStore, OnChange, Unsubscribe
from studytrack.store.models import Base, StoredDocument
from studytrack.store.paths import split_path

# Listener registry shared by stores on the same engine: id(engine) -> path -> callbacks
_listeners: dict[int, dict[str, list[OnChange]]] = {}
_listeners_lock = threading.RLock()


def get_engine() -> Engine:
    """
    Get SQLAlchemy engine for the configured DATABASE_URL.

    Uses connection pooling for better performance.
    """
    return create_engine(
        config.get_database_url(),
        pool_pre_ping=True,    # Verify connections before use
        echo=False
    )


class SqlDocumentStore(DocumentStore):
    """Document store on a single SQLAlchemy table."""

    supports_atomic_append = True

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine or get_engine()
        self._sessionmaker = sessionmaker(bind=self._engine, expire_on_commit=False)
        self.init_db()

    def init_db(self) -> None:
        """
        Create the documents table if it does not exist.

        Safe to call multiple times.
        """
        with self._translate_errors("init_db", "documents"):
            Base.metadata.create_all(self._engine)

    @contextmanager
    def _translate_errors(self, action: str, path: str):
        try:
            yield
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning(f"SQL {action} failed for {path}: {exc}")
            raise TransientStoreError(f"{action} failed for {path}: {exc}") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                logger.warning(f"SQL connection lost during {action} for {path}")
                raise TransientStoreError(f"{action} failed for {path}: {exc}") from exc
            raise

    @contextmanager
    def _session(self, action: str, path: str) -> Iterator[Session]:
        with self._translate_errors(action, path):
            session = self._sessionmaker()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ---- Reads ----

    def get(self, path: str) -> Optional[Document]:
        with self._session("get", path) as session:
            row = session.get(StoredDocument, path)
            return copy.deepcopy(row.body) if row is not None else None

    def list_documents(self, collection_path: str) -> dict[str, Document]:
        with self._session("list", collection_path) as session:
            rows = session.execute(
                select(StoredDocument).where(StoredDocument.parent == collection_path)
            ).scalars().all()
            return {split_path(row.path)[1]: copy.deepcopy(row.body) for row in rows}

    # ---- Writes ----

    def set(self, path: str, document: Document, merge: bool = False) -> None:
        parent, _ = split_path(path)
        with self._session("set", path) as session:
            row = session.get(StoredDocument, path)
            if row is None:
                session.add(StoredDocument(
                    path=path,
                    parent=parent,
                    body=copy.deepcopy(document),
                    updated_at=datetime.now(timezone.utc)
                ))
            else:
                body = {**row.body, **document} if merge else document
                # Reassign so the JSON column is flagged dirty
                row.body = copy.deepcopy(body)
                row.updated_at = datetime.now(timezone.utc)
        self._notify(path)

    def delete(self, path: str) -> None:
        with self._session("delete", path) as session:
            result = session.execute(delete(StoredDocument).where(StoredDocument.path == path))
            existed = result.rowcount > 0
        if existed:
            self._notify(path)

    def delete_many(self, paths: Iterable[str]) -> int:
        paths = list(paths)
        if not paths:
            return 0
        with self._session("delete_many", paths[0]) as session:
            session.execute(delete(StoredDocument).where(StoredDocument.path.in_(paths)))
        for path in paths:
            self._notify(path)
        return len(paths)

    def atomic_append(
        self,
        path: str,
        field: str,
        entry: Any,
        defaults: Optional[Document] = None
    ) -> None:
        try:
            self._append_once(path, field, entry, defaults)
        except IntegrityError:
            # Another writer created the row first; it exists now
            self._append_once(path, field, entry, defaults)
        self._notify(path)

    def _append_once(
        self,
        path: str,
        field: str,
        entry: Any,
        defaults: Optional[Document]
    ) -> None:
        parent, _ = split_path(path)
        with self._session("append", path) as session:
            row = session.execute(
                select(StoredDocument)
                .where(StoredDocument.path == path)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                body = copy.deepcopy(defaults or {})
                body[field] = [copy.deepcopy(entry)]
                session.add(StoredDocument(
                    path=path,
                    parent=parent,
                    body=body,
                    updated_at=datetime.now(timezone.utc)
                ))
            else:
                body = copy.deepcopy(row.body)
                body[field] = list(body.get(field) or []) + [copy.deepcopy(entry)]
                row.body = body
                row.updated_at = datetime.now(timezone.utc)

    # ---- Subscriptions ----

    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        key = id(self._engine)
        with _listeners_lock:
            _listeners.setdefault(key, {}).setdefault(path, []).append(on_change)

        on_change(self.get(path))

        def unsubscribe() -> None:
            with _listeners_lock:
                listeners = _listeners.get(key, {}).get(path, [])
                if on_change in listeners:
                    listeners.remove(on_change)

        return unsubscribe

    def _notify(self, path: str) -> None:
        with _listeners_lock:
            listeners = list(_listeners.get(id(self._engine), {}).get(path, []))
        if not listeners:
            return
        value = self.get(path)
        for listener in listeners:
            try:
                listener(copy.deepcopy(value))
            except Exception:
                logger.exception(f"Subscriber for {path} raised")

    def close(self) -> None:
        with _listeners_lock:
            _listeners.pop(id(self._engine), None)
        self._engine.dispose()
