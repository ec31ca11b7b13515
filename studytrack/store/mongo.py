"""
MongoDB document store.

Each logical collection (items, history, ...) maps to one Mongo collection.
Documents are keyed by their full path in _id and carry their collection
path in _parent, so one collection serves every user.

Subscriptions use change streams, which need a replica set (Atlas clusters
are replica sets).
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterable, Optional

from loguru import logger
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from studytrack import config
from studytrack.errors import TransientStoreError
from studytrack.store.base import Document, DocumentStore, OnChange, Unsubscribe
from studytrack.store.paths import collection_name, split_path

# Fields added by this backend and stripped on read
_INTERNAL_FIELDS = ("_id", "_parent")

# Global connection pool (reused across store instances)
_client: Optional[MongoClient] = None


# ---- Connection Management ----

def get_client() -> MongoClient:
    """
    Get the shared MongoClient.

    Uses a persistent connection pool so every store instance in the
    process reuses the same connections.
    """
    global _client

    if _client is not None:
        return _client

    _client = MongoClient(
        config.get_mongo_uri(),
        maxPoolSize=10,  # Connection pool size
        minPoolSize=1,   # Keep at least 1 connection alive
        maxIdleTimeMS=60000  # Keep connections alive for 60 seconds
    )
    return _client


@contextmanager
def _translate_errors(action: str, path: str):
    try:
        yield
    except PyMongoError as exc:
        logger.warning(f"Mongo {action} failed for {path}: {exc}")
        raise TransientStoreError(f"{action} failed for {path}: {exc}") from exc


def strip_internal(doc: Optional[dict]) -> Optional[Document]:
    """Remove backend bookkeeping fields from a raw Mongo document."""
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k not in _INTERNAL_FIELDS}


def change_to_document(change: dict) -> Optional[Document]:
    """
    Document value carried by a change-stream event (None for deletes).
    """
    if change.get("operationType") in ("delete", "drop", "invalidate"):
        return None
    return strip_internal(change.get("fullDocument"))


class MongoDocumentStore(DocumentStore):
    """Document store on top of pymongo."""

    supports_atomic_append = True

    def __init__(self, client: Optional[MongoClient] = None, db_name: Optional[str] = None):
        self._client = client or get_client()
        self._db = self._client[db_name or config.get_db_name()]

    def _collection(self, path: str) -> tuple[Collection, str]:
        parent, _ = split_path(path)
        return self._db[collection_name(parent)], parent

    # ---- Reads ----

    def get(self, path: str) -> Optional[Document]:
        collection, _ = self._collection(path)
        with _translate_errors("get", path):
            return strip_internal(collection.find_one({"_id": path}))

    def list_documents(self, collection_path: str) -> dict[str, Document]:
        collection = self._db[collection_name(collection_path)]
        with _translate_errors("list", collection_path):
            return {
                split_path(raw["_id"])[1]: strip_internal(raw)
                for raw in collection.find({"_parent": collection_path})
            }

    # ---- Writes ----

    def set(self, path: str, document: Document, merge: bool = False) -> None:
        collection, parent = self._collection(path)
        with _translate_errors("set", path):
            if merge:
                collection.update_one(
                    {"_id": path},
                    {"$set": dict(document), "$setOnInsert": {"_parent": parent}},
                    upsert=True
                )
            else:
                collection.replace_one(
                    {"_id": path},
                    {**document, "_id": path, "_parent": parent},
                    upsert=True
                )

    def delete(self, path: str) -> None:
        collection, _ = self._collection(path)
        with _translate_errors("delete", path):
            collection.delete_one({"_id": path})

    def delete_many(self, paths: Iterable[str]) -> int:
        by_collection: dict[str, list[str]] = {}
        for path in paths:
            parent, _ = split_path(path)
            by_collection.setdefault(collection_name(parent), []).append(path)

        count = 0
        for name, ids in by_collection.items():
            with _translate_errors("delete_many", name):
                self._db[name].delete_many({"_id": {"$in": ids}})
            count += len(ids)
        return count

    def atomic_append(
        self,
        path: str,
        field: str,
        entry: Any,
        defaults: Optional[Document] = None
    ) -> None:
        collection, parent = self._collection(path)
        on_insert = {k: v for k, v in (defaults or {}).items() if k != field}
        on_insert["_parent"] = parent
        with _translate_errors("append", path):
            collection.update_one(
                {"_id": path},
                {"$push": {field: entry}, "$setOnInsert": on_insert},
                upsert=True
            )

    # ---- Subscriptions ----

    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        collection, _ = self._collection(path)
        stop = threading.Event()

        # Open the stream before reading so no change between the two is lost
        with _translate_errors("subscribe", path):
            stream = collection.watch(
                [{"$match": {"documentKey._id": path}}],
                full_document="updateLookup",
                max_await_time_ms=500
            )

        try:
            on_change(self.get(path))
        except Exception:
            stream.close()
            raise

        def _watch() -> None:
            try:
                while not stop.is_set() and stream.alive:
                    change = stream.try_next()
                    if change is None:
                        continue
                    try:
                        on_change(change_to_document(change))
                    except Exception:
                        logger.exception(f"Subscriber for {path} raised")
            except PyMongoError as exc:
                logger.error(f"Change stream for {path} stopped: {exc}")
            finally:
                stream.close()

        thread = threading.Thread(target=_watch, name=f"watch:{path}", daemon=True)
        thread.start()

        def unsubscribe() -> None:
            stop.set()
            thread.join(timeout=2.0)

        return unsubscribe

    def close(self) -> None:
        global _client
        if self._client is _client:
            _client = None
        self._client.close()
