"""
In-process document store.

Used for tests, offline use and as the default backend. Every client
sharing one instance sees the same documents, so two coordinators on one
MemoryDocumentStore behave like two devices of the same user.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Optional

from loguru import logger

from studytrack.store.base import Document, DocumentStore, OnChange, Unsubscribe
from studytrack.store.paths import split_path


class MemoryDocumentStore(DocumentStore):
    """Dict-backed store with synchronous change notification."""

    supports_atomic_append = True

    def __init__(self):
        self._docs: dict[str, Document] = {}
        self._listeners: dict[str, list[OnChange]] = {}
        self._lock = threading.RLock()

    # ---- Reads ----

    def get(self, path: str) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    def list_documents(self, collection_path: str) -> dict[str, Document]:
        prefix = collection_path.rstrip("/") + "/"
        with self._lock:
            return {
                path[len(prefix):]: copy.deepcopy(doc)
                for path, doc in self._docs.items()
                if path.startswith(prefix) and "/" not in path[len(prefix):]
            }

    # ---- Writes ----

    def set(self, path: str, document: Document, merge: bool = False) -> None:
        split_path(path)
        with self._lock:
            existing = self._docs.get(path)
            if merge and existing is not None:
                updated = {**existing, **copy.deepcopy(document)}
            else:
                updated = copy.deepcopy(document)
            self._docs[path] = updated
        self._notify(path)

    def delete(self, path: str) -> None:
        with self._lock:
            existed = self._docs.pop(path, None) is not None
        if existed:
            self._notify(path)

    def atomic_append(
        self,
        path: str,
        field: str,
        entry: Any,
        defaults: Optional[Document] = None
    ) -> None:
        split_path(path)
        with self._lock:
            doc = self._docs.get(path)
            if doc is None:
                doc = copy.deepcopy(defaults or {})
                self._docs[path] = doc
            doc[field] = list(doc.get(field) or []) + [copy.deepcopy(entry)]
        self._notify(path)

    # ---- Subscriptions ----

    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        with self._lock:
            self._listeners.setdefault(path, []).append(on_change)

        on_change(self.get(path))

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(path, [])
                if on_change in listeners:
                    listeners.remove(on_change)

        return unsubscribe

    def _notify(self, path: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(path, []))
        if not listeners:
            return
        value = self.get(path)
        for listener in listeners:
            try:
                listener(copy.deepcopy(value))
            except Exception:
                # One broken subscriber must not stop delivery to the others
                logger.exception(f"Subscriber for {path} raised")
