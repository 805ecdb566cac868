"""Pydantic schemas for feedback record endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FeedbackRecordResponse(BaseModel):
    """A stored step output as returned to clients."""

    id: int
    subject_kind: str = Field(serialization_alias="subjectKind")
    subject_key: str = Field(serialization_alias="subjectKey")
    feedback_criteria: str = Field(serialization_alias="feedbackCriteria")
    feedback_language: str = Field(serialization_alias="feedbackLanguage")
    source: str
    cot_content: Optional[str] = Field(default=None, serialization_alias="cotContent")
    score_content: Optional[str] = Field(default=None, serialization_alias="scoreContent")
    feedback_content: Optional[str] = Field(default=None, serialization_alias="feedbackContent")
    is_preferred: bool = Field(serialization_alias="isPreferred")
    created_by: Optional[int] = Field(default=None, serialization_alias="createdBy")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    """Body of a JSON error returned before any event is streamed."""

    detail: str


__all__ = ["ErrorResponse", "FeedbackRecordResponse"]
