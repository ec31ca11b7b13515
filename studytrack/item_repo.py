"""
Document-store repository for items.

Items are created lazily: no record exists until the first scheduling
write. Reads therefore go through get-or-default, so a missing record and
a stage 0 record look the same to every caller.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger
from pydantic import ValidationError

from studytrack.schemas import Item, item_id_for
from studytrack.store import DocumentStore
from studytrack.store import paths


def _reset_scheduling(item: Item) -> Item:
    return item.model_copy(update={
        "stage": 0,
        "last_studied_at": None,
        "next_review_at": None,
        "is_completed": False,
    })


# ---- Query Functions ----

def load_item(store: DocumentStore, user_id: str, item_id: str) -> Optional[Item]:
    """
    Load a stored item record.

    Returns:
        Item, or None if no record exists
    """
    doc = store.get(paths.item_path(user_id, item_id))
    if doc is None:
        return None
    return Item.model_validate(doc)


def get_item(store: DocumentStore, user_id: str, subject: str, ordinal: int) -> Item:
    """
    Get an item by subject and ordinal, defaulting to stage 0 if missing.
    """
    stored = load_item(store, user_id, item_id_for(subject, ordinal))
    if stored is not None:
        return stored
    return Item(subject=subject, ordinal=ordinal)


def get_or_default(store: DocumentStore, user_id: str, snapshot: Item) -> Item:
    """
    Current state of the item a snapshot refers to.

    The stored record wins; snapshot metadata fills blank title and
    description. With no stored record the snapshot is returned reset to
    stage 0.
    """
    stored = load_item(store, user_id, snapshot.id)
    if stored is None:
        return _reset_scheduling(snapshot)

    updates = {}
    if not stored.title and snapshot.title:
        updates["title"] = snapshot.title
    if not stored.description and snapshot.description:
        updates["description"] = snapshot.description
    return stored.model_copy(update=updates) if updates else stored


def list_items(store: DocumentStore, user_id: str) -> dict[str, Item]:
    """
    All stored items of a user, keyed by item id.

    Documents that do not parse are skipped with a warning.
    """
    items: dict[str, Item] = {}
    for doc_id, doc in store.list_documents(paths.items_path(user_id)).items():
        try:
            item = Item.model_validate(doc)
        except ValidationError as exc:
            logger.warning(f"Skipping malformed item document {doc_id}: {exc}")
            continue
        items[item.id] = item
    return items


# ---- Write Functions ----

def save_item(store: DocumentStore, user_id: str, item: Item) -> None:
    """
    Save item (insert or update).

    Merges into an existing record so fields written by other
    collaborators survive.
    """
    store.set(
        paths.item_path(user_id, item.id),
        item.model_dump(mode="json"),
        merge=True
    )


def delete_item(store: DocumentStore, user_id: str, item_id: str) -> None:
    store.delete(paths.item_path(user_id, item_id))


def reset_subject(store: DocumentStore, user_id: str, subject_code: str) -> int:
    """
    Delete every stored item of a subject.

    Returns:
        Number of item records deleted
    """
    targets = [
        paths.item_path(user_id, item.id)
        for item in list_items(store, user_id).values()
        if item.subject == subject_code
    ]
    if not targets:
        return 0
    count = store.delete_many(targets)
    logger.info(f"Reset subject {subject_code}: deleted {count} items")
    return count
