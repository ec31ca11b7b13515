"""
Document store abstraction.

The core consumes a generic "document store with realtime subscription".
Backends translate their own availability failures into
TransientStoreError; everything else propagates unchanged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

Document = dict[str, Any]
OnChange = Callable[[Optional[Document]], None]
Unsubscribe = Callable[[], None]


class DocumentStore(ABC):
    """
    Path-addressed JSON documents with per-document subscriptions.

    Writes are last-write-wins on the whole document (or on the top-level
    fields given, when merge=True).
    """

    #: True when atomic_append is race-free on this backend
    supports_atomic_append: bool = False

    @abstractmethod
    def get(self, path: str) -> Optional[Document]:
        """Return the document at path, or None if absent."""

    @abstractmethod
    def set(self, path: str, document: Document, merge: bool = False) -> None:
        """Write a document; merge=True updates only the given top-level fields."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a document. Deleting an absent document is a no-op."""

    @abstractmethod
    def list_documents(self, collection_path: str) -> dict[str, Document]:
        """All documents directly under a collection, keyed by document id."""

    @abstractmethod
    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        """
        Watch a single document.

        on_change is called once with the current value (None if absent)
        and again after every change. Returns a function that stops the
        subscription.
        """

    def delete_many(self, paths: Iterable[str]) -> int:
        """Delete several documents; returns how many paths were given."""
        count = 0
        for path in paths:
            self.delete(path)
            count += 1
        return count

    def atomic_append(
        self,
        path: str,
        field: str,
        entry: Any,
        defaults: Optional[Document] = None
    ) -> None:
        """
        Append entry to the list stored in field, creating the document
        (with defaults) if needed, without a read-modify-write race.

        Only available when supports_atomic_append is True.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support atomic_append"
        )

    def close(self) -> None:
        """Release connections held by the backend."""
