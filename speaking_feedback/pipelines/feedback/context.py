"""Explicit dependencies handed to every feed run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from speaking_feedback.application.interfaces import (
    FeedbackRepositoryInterface,
    ProviderClientInterface,
)

from .events import EventEmitter


@dataclass
class PipelineContext:
    """Everything a feed run touches: store, provider client, event sink and flags."""

    repository: FeedbackRepositoryInterface
    client: ProviderClientInterface
    emitter: EventEmitter
    user_id: Optional[int] = None
    stream_responses: bool = True
    default_language: str = "en"
    feedback_order: str = "desc"
    feedback_limit: int = 20


__all__ = ["PipelineContext"]
