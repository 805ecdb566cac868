"""SQLAlchemy models for the speaking feedback service."""

from .base import Base
from .feed import ApiFeed  # noqa: F401
from .feedback import FeedbackRecord  # noqa: F401
from .speech import AudioReference, Speech, SpeechAttempt  # noqa: F401

__all__ = [
    "Base",
    "ApiFeed",
    "AudioReference",
    "FeedbackRecord",
    "Speech",
    "SpeechAttempt",
]
