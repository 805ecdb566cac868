"""Domain models exchanged between the repositories and the pipeline."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

CONTENT_FIELDS = ("cot_content", "score_content", "feedback_content")


class AudioRef(BaseModel):
    """Stored audio file plus the transcription cached on it."""

    id: int
    file_path: str
    title: Optional[str] = None
    transcription: Optional[dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def transcript_text(self) -> str:
        if not self.transcription:
            return ""
        return str(self.transcription.get("text") or "")


class SpeechInfo(BaseModel):
    """Speech subject with its ordered audio references."""

    id: int
    uuid: str
    created_by: Optional[int] = None
    audio_references: list[AudioRef] = []

    model_config = ConfigDict(from_attributes=True)


class AttemptInfo(BaseModel):
    """Attempt subject: one answer to one question."""

    id: int
    speech_id: Optional[int] = None
    speech_uuid: Optional[str] = None
    title: Optional[str] = None
    question_title: Optional[str] = None
    question_content: Optional[str] = None
    created_by: Optional[int] = None
    audio: Optional[AudioRef] = None

    model_config = ConfigDict(from_attributes=True)


class FeedbackEntry(BaseModel):
    """A persisted step output."""

    id: int
    subject_kind: str
    subject_key: str
    feedback_criteria: str = "general"
    feedback_language: str = "en"
    source: str = "ai"
    cot_content: Optional[str] = None
    score_content: Optional[str] = None
    feedback_content: Optional[str] = None
    is_preferred: bool = False
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def content(self, field: str) -> Optional[str]:
        """Return the value of one content column by name."""

        if field not in CONTENT_FIELDS:
            raise ValueError(f"Unknown feedback field: {field}")
        return getattr(self, field)


class FeedbackDraft(BaseModel):
    """Data for a new feedback row holding a single content field."""

    subject_kind: str
    subject_key: str
    feedback_criteria: str = "general"
    feedback_language: str = "en"
    source: str = "ai"
    field: str
    content: str
    created_by: Optional[int] = None
