"""
Session Coordinator - cross-device focus sessions.
"""

from studytrack.session.coordinator import SessionCoordinator
from studytrack.session.state import CompletionResult, SessionPhase, SessionSnapshot

__all__ = [
    "SessionCoordinator",
    "CompletionResult",
    "SessionPhase",
    "SessionSnapshot",
]
