import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from speaking_feedback.application.interfaces import FeedbackRepositoryInterface
from speaking_feedback.domain.errors import PersistenceError
from speaking_feedback.domain.models import (
    CONTENT_FIELDS,
    AttemptInfo,
    AudioRef,
    FeedbackDraft,
    FeedbackEntry,
    SpeechInfo,
)
from speaking_feedback.models import ApiFeed, AudioReference, FeedbackRecord, Speech, SpeechAttempt
from speaking_feedback.pipelines.feedback.feed_config import parse_feed
from speaking_feedback.pipelines.feedback.types import FeedConfig, SubjectKind, SubjectRef

logger = logging.getLogger(__name__)

_FILTERABLE_COLUMNS = {
    "feedback_language",
    "source",
    "is_preferred",
    "created_by",
    "feedback_criteria",
}

T = TypeVar("T")


def _serialized(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Run one repository call at a time on the shared session."""

    @functools.wraps(method)
    async def wrapper(self: "SqlAlchemyFeedbackRepository", *args: Any, **kwargs: Any) -> T:
        async with self._lock:
            return await method(self, *args, **kwargs)

    return wrapper


class SqlAlchemyFeedbackRepository(FeedbackRepositoryInterface):
    """SQLAlchemy implementation of the feedback store"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._lock = asyncio.Lock()

    @_serialized
    async def get_feed(self, feed_id: int) -> Optional[FeedConfig]:
        db_feed = await self.session.get(ApiFeed, feed_id)
        if db_feed is None:
            return None
        return parse_feed(
            feed_id=db_feed.id,
            title=db_feed.feed_title,
            description=db_feed.feed_desc,
            apply_to=db_feed.apply_to,
            feedback_criteria=db_feed.feedback_criteria,
            meta=db_feed.meta,
            process_order=db_feed.process_order,
        )

    @_serialized
    async def get_speech(self, uuid: str) -> Optional[SpeechInfo]:
        return await self._load_speech(uuid)

    @_serialized
    async def get_attempt(self, attempt_id: int) -> Optional[AttemptInfo]:
        return await self._load_attempt(attempt_id)

    @_serialized
    async def get_audio_references(self, subject: SubjectRef) -> Optional[List[AudioRef]]:
        return await self._load_audio_references(subject)

    async def _load_speech(self, uuid: str) -> Optional[SpeechInfo]:
        result = await self.session.execute(select(Speech).where(Speech.uuid == uuid))
        db_speech = result.scalar_one_or_none()
        return SpeechInfo.model_validate(db_speech) if db_speech else None

    async def _load_attempt(self, attempt_id: int) -> Optional[AttemptInfo]:
        result = await self.session.execute(
            select(SpeechAttempt, Speech.uuid)
            .outerjoin(Speech, Speech.id == SpeechAttempt.speech_id)
            .where(SpeechAttempt.id == attempt_id)
        )
        row = result.first()
        if row is None:
            return None
        db_attempt, speech_uuid = row
        return AttemptInfo(
            id=db_attempt.id,
            speech_id=db_attempt.speech_id,
            speech_uuid=speech_uuid,
            title=db_attempt.title,
            question_title=db_attempt.question_title,
            question_content=db_attempt.question_content,
            created_by=db_attempt.created_by,
            audio=AudioRef.model_validate(db_attempt.audio) if db_attempt.audio else None,
        )

    async def _load_audio_references(self, subject: SubjectRef) -> Optional[List[AudioRef]]:
        if subject.kind is SubjectKind.ATTEMPT:
            attempt = await self._load_attempt(int(subject.key))
            if attempt is None:
                return None
            return [attempt.audio] if attempt.audio else []

        speech = await self._load_speech(subject.key)
        if speech is None:
            return None
        return list(speech.audio_references)

    @_serialized
    async def get_subject_transcript(self, subject: SubjectRef) -> dict[int, Mapping[str, Any]]:
        references = await self._load_audio_references(subject) or []
        return {ref.id: ref.transcription for ref in references if ref.transcription}

    @_serialized
    async def get_cached_transcription(self, audio_id: int) -> Optional[Mapping[str, Any]]:
        db_audio = await self.session.get(AudioReference, audio_id)
        if db_audio is None:
            return None
        return db_audio.transcription or None

    @_serialized
    async def set_cached_transcription(
        self, audio_id: int, transcription: Mapping[str, Any]
    ) -> None:
        try:
            await self.session.execute(
                update(AudioReference)
                .where(AudioReference.id == audio_id)
                .values(transcription=dict(transcription))
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"Could not store transcription for media {audio_id}") from exc

    @_serialized
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
        query = select(FeedbackRecord).where(
            FeedbackRecord.subject_kind == subject.kind.value,
            FeedbackRecord.subject_key == subject.key,
        )
        if criteria is not None:
            query = query.where(FeedbackRecord.feedback_criteria == criteria)
        query = self._apply_filters(query, filters)
        if with_content is not None:
            if with_content not in CONTENT_FIELDS:
                raise PersistenceError(f"Unknown feedback content field: {with_content}")
            column = getattr(FeedbackRecord, with_content)
            query = query.where(column.isnot(None), column != "")

        if order == "asc":
            query = query.order_by(FeedbackRecord.created_at.asc(), FeedbackRecord.id.asc())
        else:
            query = query.order_by(FeedbackRecord.created_at.desc(), FeedbackRecord.id.desc())

        result = await self.session.execute(query.limit(limit))
        return [FeedbackEntry.model_validate(row) for row in result.scalars().all()]

    @_serialized
    async def get_attempt_feedback_records(
        self,
        *,
        speech_uuid: Optional[str] = None,
        attempt_id: Optional[int] = None,
        criteria: Optional[str] = None,
        limit: int = 200,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[FeedbackEntry]:
        query = select(FeedbackRecord).where(
            FeedbackRecord.subject_kind == SubjectKind.ATTEMPT.value
        )
        if attempt_id is not None:
            query = query.where(FeedbackRecord.subject_key == str(attempt_id))
        elif speech_uuid:
            result = await self.session.execute(
                select(SpeechAttempt.id)
                .join(Speech, Speech.id == SpeechAttempt.speech_id)
                .where(Speech.uuid == speech_uuid)
            )
            attempt_keys = [str(value) for value in result.scalars().all()]
            if not attempt_keys:
                return []
            query = query.where(FeedbackRecord.subject_key.in_(attempt_keys))
        else:
            return []

        if criteria is not None:
            query = query.where(FeedbackRecord.feedback_criteria == criteria)
        query = self._apply_filters(query, filters)
        query = query.order_by(FeedbackRecord.created_at.desc(), FeedbackRecord.id.desc())

        result = await self.session.execute(query.limit(limit))
        return [FeedbackEntry.model_validate(row) for row in result.scalars().all()]

    @_serialized
    async def create_feedback_record(self, draft: FeedbackDraft) -> int:
        if draft.field not in CONTENT_FIELDS:
            raise PersistenceError(f"Unknown feedback field: {draft.field}")

        db_record = FeedbackRecord(
            subject_kind=draft.subject_kind,
            subject_key=draft.subject_key,
            feedback_criteria=draft.feedback_criteria,
            feedback_language=draft.feedback_language,
            source=draft.source,
            created_by=draft.created_by,
            **{draft.field: draft.content},
        )
        self.session.add(db_record)
        try:
            await self.session.commit()
            await self.session.refresh(db_record)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError("Could not save feedback to the database") from exc
        return db_record.id

    @_serialized
    async def set_preferred_feedback(self, record_id: int) -> Optional[FeedbackEntry]:
        db_record = await self.session.get(FeedbackRecord, record_id)
        if db_record is None:
            return None

        try:
            await self.session.execute(
                update(FeedbackRecord)
                .where(
                    FeedbackRecord.subject_kind == db_record.subject_kind,
                    FeedbackRecord.subject_key == db_record.subject_key,
                    FeedbackRecord.feedback_criteria == db_record.feedback_criteria,
                    FeedbackRecord.id != db_record.id,
                )
                .values(is_preferred=False)
            )
            db_record.is_preferred = True
            await self.session.commit()
            await self.session.refresh(db_record)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise PersistenceError(f"Could not mark feedback {record_id} as preferred") from exc
        return FeedbackEntry.model_validate(db_record)

    @staticmethod
    def _apply_filters(query: Any, filters: Optional[Mapping[str, Any]]) -> Any:
        for name, value in (filters or {}).items():
            if name not in _FILTERABLE_COLUMNS:
                logger.debug("Ignoring unsupported feedback filter %r", name)
                continue
            if name == "is_preferred" and isinstance(value, str):
                value = value.strip().lower() in {"1", "true", "yes"}
            query = query.where(getattr(FeedbackRecord, name) == value)
        return query
