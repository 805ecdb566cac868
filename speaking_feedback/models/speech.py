"""Speech recordings, their audio references and per-question attempts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base


class Speech(Base):
    """A speaking submission identified by a public UUID."""

    __tablename__ = "speeches"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), nullable=False, unique=True, index=True)
    created_by = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    audio_references = relationship(
        "AudioReference",
        back_populates="speech",
        order_by="AudioReference.position",
        lazy="selectin",
    )


class AudioReference(Base):
    """A stored audio file plus its cached transcription payload."""

    __tablename__ = "audio_references"

    id = Column(Integer, primary_key=True, index=True)
    speech_id = Column(
        Integer, ForeignKey("speeches.id", ondelete="CASCADE"), nullable=True, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    file_path = Column(String(1024), nullable=False)
    title = Column(String(255), nullable=True)
    transcription = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    speech = relationship("Speech", back_populates="audio_references")


class SpeechAttempt(Base):
    """A single answer to one question, backed by one audio reference."""

    __tablename__ = "speech_attempts"

    id = Column(Integer, primary_key=True, index=True)
    speech_id = Column(
        Integer, ForeignKey("speeches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    audio_id = Column(
        Integer, ForeignKey("audio_references.id", ondelete="CASCADE"), nullable=False
    )
    title = Column(String(255), nullable=True)
    question_title = Column(String(255), nullable=True)
    question_content = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    audio = relationship("AudioReference", lazy="joined")


__all__ = ["AudioReference", "Speech", "SpeechAttempt"]
