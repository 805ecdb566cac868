from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from speaking_feedback.domain.models import (
    AttemptInfo,
    AudioRef,
    FeedbackDraft,
    FeedbackEntry,
    SpeechInfo,
)

if TYPE_CHECKING:
    from speaking_feedback.pipelines.feedback.types import (
        FeedConfig,
        ProviderCallSpec,
        ProviderResponse,
        SubjectRef,
    )


class FeedbackRepositoryInterface(ABC):
    """Persistence contract used by the feedback pipeline"""

    @abstractmethod
    async def get_feed(self, feed_id: int) -> Optional[FeedConfig]:
        ...

    @abstractmethod
    async def get_speech(self, uuid: str) -> Optional[SpeechInfo]:
        ...

    @abstractmethod
    async def get_attempt(self, attempt_id: int) -> Optional[AttemptInfo]:
        ...

    @abstractmethod
    async def get_audio_references(self, subject: SubjectRef) -> Optional[List[AudioRef]]:
        """Ordered audio references, or None when the subject does not exist."""

    @abstractmethod
    async def get_subject_transcript(self, subject: SubjectRef) -> dict[int, Mapping[str, Any]]:
        """Cached transcription payloads keyed by audio reference id."""

    @abstractmethod
    async def get_cached_transcription(self, audio_id: int) -> Optional[Mapping[str, Any]]:
        ...

    @abstractmethod
    async def set_cached_transcription(
        self, audio_id: int, transcription: Mapping[str, Any]
    ) -> None:
        ...

    @abstractmethod
    async def get_feedback_records(
        self,
        subject: SubjectRef,
        criteria: Optional[str],
        *,
        order: str = "desc",
        limit: int = 20,
        filters: Optional[Mapping[str, Any]] = None,
        with_content: Optional[str] = None,
    ) -> List[FeedbackEntry]:
        """Feedback rows of one subject; ``with_content`` keeps rows whose content field is filled."""

    @abstractmethod
    async def get_attempt_feedback_records(
        self,
        *,
        speech_uuid: Optional[str] = None,
        attempt_id: Optional[int] = None,
        criteria: Optional[str] = None,
        limit: int = 200,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[FeedbackEntry]:
        """Newest-first feedback rows of attempts, optionally scoped to a speech."""

    @abstractmethod
    async def create_feedback_record(self, draft: FeedbackDraft) -> int:
        ...

    @abstractmethod
    async def set_preferred_feedback(self, record_id: int) -> Optional[FeedbackEntry]:
        ...


class ProviderClientInterface(ABC):
    """Outbound AI calls the pipeline depends on"""

    @abstractmethod
    async def call_once(self, spec: ProviderCallSpec) -> ProviderResponse:
        ...

    @abstractmethod
    async def call_stream(
        self,
        spec: ProviderCallSpec,
        on_chunk: Optional[Callable[[str, bool], Optional[Awaitable[None]]]] = None,
    ) -> ProviderResponse:
        ...

    @abstractmethod
    async def call_parallel(
        self,
        specs: Sequence[ProviderCallSpec],
        *,
        on_result: Optional[
            Callable[[int, ProviderResponse, int, int], Optional[Awaitable[None]]]
        ] = None,
    ) -> List[ProviderResponse]:
        """Responses in input order; the first failure aborts the batch."""

    @abstractmethod
    async def transcribe_batch(
        self, references: Sequence[AudioRef], **options: Any
    ) -> dict[int, dict[str, Any]]:
        """Transcription payloads keyed by audio reference id."""
