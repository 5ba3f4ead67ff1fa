"""
Exceptions raised by the tutor outside the scoring engine.

Scoring errors never surface as exceptions; they degrade to neutral scores.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for tutor errors."""


class InvalidSessionError(TutorError):
    """Session is structurally invalid (missing id or topic, bad index)."""


class SessionStoreError(TutorError):
    """Persistence layer failed to load, save or delete a session."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class DialogueServiceError(TutorError):
    """The language model call failed or timed out."""
