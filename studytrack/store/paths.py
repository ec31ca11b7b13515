"""
Document paths, scoped per user.

Layout:
    users/{uid}/items/{item_id}
    users/{uid}/history/{entry_id}
    users/{uid}/achievements/{YYYY-MM-DD}
    users/{uid}/sessions/{session_type}
    users/{uid}/subjects/{code}
"""

from __future__ import annotations

ITEMS = "items"
HISTORY = "history"
ACHIEVEMENTS = "achievements"
SESSIONS = "sessions"
SUBJECTS = "subjects"


def user_collection(user_id: str, name: str) -> str:
    if not user_id:
        raise ValueError("user_id is required to build a document path")
    return f"users/{user_id}/{name}"


def items_path(user_id: str) -> str:
    return user_collection(user_id, ITEMS)


def item_path(user_id: str, item_id: str) -> str:
    return f"{items_path(user_id)}/{item_id}"


def history_path(user_id: str) -> str:
    return user_collection(user_id, HISTORY)


def history_entry_path(user_id: str, entry_id: str) -> str:
    return f"{history_path(user_id)}/{entry_id}"


def achievements_path(user_id: str) -> str:
    return user_collection(user_id, ACHIEVEMENTS)


def achievement_day_path(user_id: str, day: str) -> str:
    return f"{achievements_path(user_id)}/{day}"


def session_path(user_id: str, session_type: str) -> str:
    return f"{user_collection(user_id, SESSIONS)}/{session_type}"


def subjects_path(user_id: str) -> str:
    return user_collection(user_id, SUBJECTS)


def subject_path(user_id: str, code: str) -> str:
    return f"{subjects_path(user_id)}/{code}"


def split_path(path: str) -> tuple[str, str]:
    """
    Split a document path into (collection path, document id).
    """
    parent, sep, doc_id = path.rpartition("/")
    if not sep or not parent or not doc_id:
        raise ValueError(f"Not a document path: '{path}'")
    return parent, doc_id


def collection_name(collection_path: str) -> str:
    """Logical collection name, e.g. "items" for users/u1/items."""
    return collection_path.rstrip("/").rpartition("/")[2]
