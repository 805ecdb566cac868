"""Schemas for phonemization requests."""

from typing import Any

from pydantic import BaseModel, Field


class PhonemizeRequest(BaseModel):
    text: str = Field(..., min_length=1)
    language: str = "en-us"


class PhonemizeResponse(BaseModel):
    phonemes: Any
    tokens: list[Any] = []
