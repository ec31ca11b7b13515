"""
Persistence substrate: document store abstraction and backends.

Backends:
- memory: in-process (tests, offline)
- mongo: MongoDB via pymongo, change-stream subscriptions
- sql: SQLAlchemy JSON table, in-process subscriptions
"""

from __future__ import annotations

from studytrack import config
from studytrack.store.base import Document, DocumentStore, OnChange, Unsubscribe
from studytrack.store.memory import MemoryDocumentStore


def create_store(backend: str | None = None) -> DocumentStore:
    """
    Build the document store named by STUDYTRACK_STORE (or `backend`).
    """
    backend = backend or config.get_store_backend()

    if backend == "memory":
        return MemoryDocumentStore()
    if backend == "mongo":
        from studytrack.store.mongo import MongoDocumentStore
        return MongoDocumentStore()
    if backend == "sql":
        from studytrack.store.sql import SqlDocumentStore
        return SqlDocumentStore()
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = [
    "Document",
    "DocumentStore",
    "MemoryDocumentStore",
    "OnChange",
    "Unsubscribe",
    "create_store",
]
