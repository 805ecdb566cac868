"""FastAPI routers acting as controllers in the MVC architecture."""

from . import feedback, phonemize, tts

__all__ = ["feedback", "phonemize", "tts"]
