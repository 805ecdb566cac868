"""Persisted step outputs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from .base import Base


class FeedbackRecord(Base):
    """One step output scoped to a subject and a feedback criterion."""

    __tablename__ = "feedback_records"
    __table_args__ = (
        Index(
            "ix_feedback_records_subject_criteria",
            "subject_kind",
            "subject_key",
            "feedback_criteria",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    subject_kind = Column(String(16), nullable=False, default="speech")
    subject_key = Column(String(64), nullable=False)
    feedback_criteria = Column(String(128), nullable=False, default="general")
    feedback_language = Column(String(8), nullable=False, default="en")
    source = Column(String(8), nullable=False, default="ai")
    cot_content = Column(Text, nullable=True)
    score_content = Column(Text, nullable=True)
    feedback_content = Column(Text, nullable=True)
    is_preferred = Column(Boolean, nullable=False, default=False)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


__all__ = ["FeedbackRecord"]
