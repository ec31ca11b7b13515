"""
Error types raised by studytrack.
"""

from __future__ import annotations


class StudyTrackError(Exception):
    """Base class for all studytrack errors."""


class TransientStoreError(StudyTrackError):
    """
    The document store could not complete a read/write/subscribe.

    Retryable. Raised by store backends for network or availability
    failures; callers decide whether to retry or surface a message.
    """


class SessionSyncError(TransientStoreError):
    """
    A completion was applied locally but the session document is not durable.

    Call SessionCoordinator.resync() to retry the write. `result` carries
    the outcome of the operation that was applied locally, if any.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class InvariantViolation(StudyTrackError):
    """An operation was attempted in a state that does not allow it."""


class NotFoundError(StudyTrackError):
    """The requested item, subject or session does not exist."""
