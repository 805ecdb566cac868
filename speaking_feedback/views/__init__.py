"""Pydantic schemas used as views in the MVC architecture."""

from .feedback import ErrorResponse, FeedbackRecordResponse
from .phonemize import PhonemizeRequest, PhonemizeResponse
from .tts import TextToSpeechRequest

__all__ = [
    "ErrorResponse",
    "FeedbackRecordResponse",
    "PhonemizeRequest",
    "PhonemizeResponse",
    "TextToSpeechRequest",
]
