"""Shared fixtures: an in-memory feedback store and a scripted provider client."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
import sys
from typing import Any, Callable, List, Mapping, Optional, Sequence

_LOG_DIR = Path(tempfile.gettempdir()) / "speaking_feedback_tests"
os.environ.setdefault("DB_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FILE", str(_LOG_DIR / "app.log"))
os.environ.setdefault("PIPELINE_LOG_FILE", str(_LOG_DIR / "pipeline.log"))
os.environ.setdefault("PIPELINE_STREAM_RESPONSES", "false")

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from speaking_feedback.application.interfaces import (  # noqa: E402
    FeedbackRepositoryInterface,
    ProviderClientInterface,
)
from speaking_feedback.domain.errors import PersistenceError, ProviderError  # noqa: E402
from speaking_feedback.domain.models import (  # noqa: E402
    AttemptInfo,
    AudioRef,
    FeedbackDraft,
    FeedbackEntry,
    SpeechInfo,
)
from speaking_feedback.pipelines.feedback import (  # noqa: E402
    DataEvent,
    DoneEvent,
    ErrorEvent,
    EventEmitter,
    FeedConfig,
    PipelineContext,
    ProviderCallSpec,
    ProviderResponse,
    StepConfig,
    SubjectKind,
    SubjectRef,
)

SPEECH_UUID = "2f1c8a52-5d0e-4c8e-9a51-3f9cf1d0a001"


class InMemoryRepository(FeedbackRepositoryInterface):
    """Dictionary-backed feedback store."""

    def __init__(self) -> None:
        self.feeds: dict[int, FeedConfig] = {}
        self.speeches: dict[str, SpeechInfo] = {}
        self.attempts: dict[int, AttemptInfo] = {}
        self.records: List[FeedbackEntry] = []
        self.transcriptions: dict[int, dict[str, Any]] = {}
        self.fail_writes = False

    def add_speech(self, uuid: str, *transcripts: Optional[str]) -> SpeechInfo:
        references = [
            AudioRef(
                id=index,
                file_path=f"/audio/{uuid}-{index}.webm",
                title=f"Part {index}",
                transcription={"text": text} if text else None,
            )
            for index, text in enumerate(transcripts, start=1)
        ]
        speech = SpeechInfo(id=len(self.speeches) + 1, uuid=uuid, audio_references=references)
        self.speeches[uuid] = speech
        return speech

    def add_record(self, subject: SubjectRef, criteria: str = "general", **content: Any) -> FeedbackEntry:
        entry = FeedbackEntry(
            id=len(self.records) + 1,
            subject_kind=subject.kind.value,
            subject_key=subject.key,
            feedback_criteria=criteria,
            **content,
        )
        self.records.append(entry)
        return entry

    async def get_feed(self, feed_id: int) -> Optional[FeedConfig]:
        return self.feeds.get(feed_id)

    async def get_speech(self, uuid: str) -> Optional[SpeechInfo]:
        speech = self.speeches.get(uuid)
        if speech is None:
            return None
        references = [
            ref.model_copy(update={"transcription": self.transcriptions[ref.id]})
            if ref.id in self.transcriptions
            else ref
            for ref in speech.audio_references
        ]
        return speech.model_copy(update={"audio_references": references})

    async def get_attempt(self, attempt_id: int) -> Optional[AttemptInfo]:
        return self.attempts.get(attempt_id)

    async def get_audio_references(self, subject: SubjectRef) -> Optional[List[AudioRef]]:
        if subject.kind is SubjectKind.ATTEMPT:
            attempt = self.attempts.get(int(subject.key))
            if attempt is None:
                return None
            return [attempt.audio] if attempt.audio else []
        speech = await self.get_speech(subject.key)
        return list(speech.audio_references) if speech else None

    async def get_subject_transcript(self, subject: SubjectRef) -> dict[int, Mapping[str, Any]]:
        references = await self.get_audio_references(subject) or []
        return {ref.id: ref.transcription for ref in references if ref.transcription}

    async def get_cached_transcription(self, audio_id: int) -> Optional[Mapping[str, Any]]:
        return self.transcriptions.get(audio_id)

    async def set_cached_transcription(self, audio_id: int, transcription: Mapping[str, Any]) -> None:
        self.transcriptions[audio_id] = dict(transcription)

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
        matches = [
            record
            for record in self.records
            if record.subject_kind == subject.kind.value
            and record.subject_key == subject.key
            and (criteria is None or record.feedback_criteria == criteria)
            and all(getattr(record, key, None) == value for key, value in (filters or {}).items())
            and (with_content is None or bool(record.content(with_content)))
        ]
        matches.sort(key=lambda record: record.id, reverse=order != "asc")
        return matches[:limit]

    async def get_attempt_feedback_records(
        self,
        *,
        speech_uuid: Optional[str] = None,
        attempt_id: Optional[int] = None,
        criteria: Optional[str] = None,
        limit: int = 200,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[FeedbackEntry]:
        if attempt_id is not None:
            keys = {str(attempt_id)}
        else:
            keys = {
                str(attempt.id)
                for attempt in self.attempts.values()
                if speech_uuid and attempt.speech_uuid == speech_uuid
            }
        matches = [
            record
            for record in self.records
            if record.subject_kind == SubjectKind.ATTEMPT.value
            and record.subject_key in keys
            and (criteria is None or record.feedback_criteria == criteria)
        ]
        matches.sort(key=lambda record: record.id, reverse=True)
        return matches[:limit]

    async def create_feedback_record(self, draft: FeedbackDraft) -> int:
        if self.fail_writes:
            raise PersistenceError("Could not save feedback to the database")
        entry = FeedbackEntry(
            id=len(self.records) + 1,
            subject_kind=draft.subject_kind,
            subject_key=draft.subject_key,
            feedback_criteria=draft.feedback_criteria,
            feedback_language=draft.feedback_language,
            source=draft.source,
            created_by=draft.created_by,
            **{draft.field: draft.content},
        )
        self.records.append(entry)
        return entry.id

    async def set_preferred_feedback(self, record_id: int) -> Optional[FeedbackEntry]:
        target = next((record for record in self.records if record.id == record_id), None)
        if target is None:
            return None
        updated = []
        for record in self.records:
            same_group = (
                record.subject_kind == target.subject_kind
                and record.subject_key == target.subject_key
                and record.feedback_criteria == target.feedback_criteria
            )
            if same_group:
                record = record.model_copy(update={"is_preferred": record.id == record_id})
            updated.append(record)
        self.records = updated
        return next(record for record in self.records if record.id == record_id)


Responder = Callable[[ProviderCallSpec], ProviderResponse]


class FakeProviderClient(ProviderClientInterface):
    """Scripted provider client that records every call."""

    def __init__(
        self,
        responder: Optional[Responder] = None,
        *,
        fail_when: Optional[Callable[[ProviderCallSpec], bool]] = None,
    ) -> None:
        self.responder = responder or (lambda spec: ProviderResponse(content=f"reply: {spec.prompt}"))
        self.fail_when = fail_when
        self.calls: List[ProviderCallSpec] = []
        self.transcribed: List[int] = []
        self.transcribe_options: dict[str, Any] = {}

    async def call_once(self, spec: ProviderCallSpec) -> ProviderResponse:
        self.calls.append(spec)
        if self.fail_when is not None and self.fail_when(spec):
            raise ProviderError("Upstream model unavailable", status_code=503, provider=spec.provider)
        return self.responder(spec)

    async def call_stream(self, spec, on_chunk=None) -> ProviderResponse:
        response = await self.call_once(spec)
        if on_chunk is not None:
            if response.reasoning_content:
                on_chunk(response.reasoning_content, True)
            on_chunk(response.content, False)
        return response

    async def call_parallel(self, specs: Sequence[ProviderCallSpec], *, on_result=None):
        results = await asyncio.gather(*(self.call_once(spec) for spec in specs))
        for index, response in enumerate(results):
            if on_result is not None:
                on_result(index, response, index + 1, len(results))
        return list(results)

    async def transcribe_batch(self, references: Sequence[AudioRef], **options: Any):
        self.transcribe_options = options
        self.transcribed.extend(reference.id for reference in references)
        return {reference.id: {"text": f"fresh transcript {reference.id}"} for reference in references}

    async def text_to_speech(self, text: str, **options: Any) -> bytes:
        return b"ID3-fake-audio"

    async def phonemize(self, text: str, language: str = "en-us") -> dict[str, Any]:
        return {"phonemes": "həˈloʊ", "tokens": [text]}


def event_names(events) -> List[tuple[str, Optional[str]]]:
    """``(variant, event_type)`` pairs for compact sequence assertions."""

    kinds = {DataEvent: "data", ErrorEvent: "error", DoneEvent: "done"}
    return [(kinds[type(event)], event.event_type) for event in events]


def make_step(name: str, prompt: str = "Evaluate the answer.", **options: Any) -> StepConfig:
    return StepConfig(name=name, prompts={"en": prompt}, **options)


@pytest.fixture
def repository() -> InMemoryRepository:
    repo = InMemoryRepository()
    repo.add_speech(SPEECH_UUID, "I grew up in a small town.", "My favourite hobby is reading.")
    return repo


@pytest.fixture
def client() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def context(repository, client, emitter) -> PipelineContext:
    return PipelineContext(
        repository=repository,
        client=client,
        emitter=emitter,
        user_id=42,
        stream_responses=False,
    )
