"""Schema for text-to-speech requests."""

from typing import Optional

from pydantic import BaseModel, Field


class TextToSpeechRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4096)
    model: str = "tts-1"
    voice: Optional[str] = None
    response_format: str = Field(default="mp3", pattern="^(mp3|opus|aac|flac|wav|pcm|ogg)$")
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    provider: str = "open-ai"
