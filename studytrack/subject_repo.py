"""
Document-store repository for subject configuration.
"""

from __future__ import annotations

from typing import Optional

from studytrack.errors import InvariantViolation, NotFoundError
from studytrack.schemas import Subject, normalize_subject_code
from studytrack.store import DocumentStore
from studytrack.store import paths


def list_subjects(store: DocumentStore, user_id: str) -> list[Subject]:
    """All configured subjects, ordered by code."""
    docs = store.list_documents(paths.subjects_path(user_id))
    subjects = [Subject.model_validate(doc) for doc in docs.values()]
    subjects.sort(key=lambda s: s.code)
    return subjects


def get_subject(store: DocumentStore, user_id: str, code: str) -> Optional[Subject]:
    doc = store.get(paths.subject_path(user_id, normalize_subject_code(code)))
    return Subject.model_validate(doc) if doc is not None else None


def require_subject(store: DocumentStore, user_id: str, code: str) -> Subject:
    subject = get_subject(store, user_id, code)
    if subject is None:
        raise NotFoundError(f"Subject '{code}' is not configured")
    return subject


def save_subject(
    store: DocumentStore,
    user_id: str,
    subject: Subject,
    editing: bool = False
) -> Subject:
    """
    Add or update a subject.

    Args:
        subject: Subject to store (code already normalised by the model)
        editing: If False, an existing subject with the same code is an error

    Returns:
        The stored subject
    """
    path = paths.subject_path(user_id, subject.code)
    if not editing and store.get(path) is not None:
        raise InvariantViolation(f"Subject '{subject.code}' already exists")
    store.set(path, subject.model_dump(mode="json"))
    return subject


def set_total_item_count(store: DocumentStore, user_id: str, code: str, total: int) -> Subject:
    """Change how many ordinal items a subject has."""
    subject = require_subject(store, user_id, code)
    updated = Subject.model_validate({**subject.model_dump(), "total_item_count": total})
    store.set(paths.subject_path(user_id, updated.code), updated.model_dump(mode="json"))
    return updated


def delete_subject(store: DocumentStore, user_id: str, code: str) -> None:
    """Remove a subject definition. Its items are left untouched."""
    store.delete(paths.subject_path(user_id, normalize_subject_code(code)))
