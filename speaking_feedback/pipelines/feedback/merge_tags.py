"""Merge-tag expansion for prompt templates.

A tag has the shape ``{prefix|parameters|suffix}``. ``parameters`` is either a
caller-supplied value (``feedback_style``, ``guide_score``, ``guide_feedback``,
``target_score``) or a lookup of the form
``table:field[filter_field:filter_value]:modifier``. Tags that resolve to a
list turn the template into a batch: one expanded prompt per list index, up
to the shortest list.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from speaking_feedback.application.interfaces import FeedbackRepositoryInterface
from speaking_feedback.domain.models import CONTENT_FIELDS, AttemptInfo, SpeechInfo

from .modifiers import apply_modifier
from .transcript_format import (
    clean_transcript_text,
    format_with_chunking,
    format_with_pauses,
    speaking_rate,
)
from .types import BatchPrompt, ResolvedPrompt, SinglePrompt, SubjectKind, SubjectRef

logger = logging.getLogger("speaking_feedback.pipeline")

TAG_PATTERN = re.compile(
    r"\{(?P<prefix>.*?)\|(?P<parameters>.*?)\|(?P<suffix>.*?)\}",
    re.MULTILINE | re.DOTALL,
)
PARAMETER_PATTERN = re.compile(
    r"(?P<table>.*?):(?P<field>[^:\[]+)"
    r"(?:\[(?P<filter_field>.*?):(?P<filter_value>.*?)\])?"
    r"(?::(?P<modifier>.*))?",
    re.DOTALL,
)
TARGET_SCORE_PATTERN = re.compile(r"^target_score:if\[(.+?)\]then\[(.+?)\]$", re.DOTALL)
SCORE_CONDITION_PATTERN = re.compile(r"^(>=|<=|>|<|!=|==)?\s*(\d+(?:\.\d+)?)$")

SHORTHANDS = {
    "attempt_title": "attempt:title",
    "attempt_transcript": "attempt:transcript",
    "attempt_question": "attempt:question_content",
}

_TRANSCRIPT_FIELDS = {
    "transcript",
    "transcripts",
    "transcript_text",
    "transcript_with_pause",
    "transcript_with_chunking",
    "speaking_rate",
}


def is_empty(value: Any) -> bool:
    """Values that produce no substitution."""

    if value is None or value is False:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value) == 0 or value == "0"
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def evaluate_score_condition(score: str, condition: str) -> bool:
    match = SCORE_CONDITION_PATTERN.match(condition.strip())
    if not match:
        return False
    try:
        current = float(score)
    except (TypeError, ValueError):
        return False
    operator = match.group(1) or "=="
    value = float(match.group(2))
    return {
        ">=": current >= value,
        "<=": current <= value,
        ">": current > value,
        "<": current < value,
        "!=": current != value,
        "==": current == value,
    }[operator]


def render_target_score(parameters: str, target_score: str) -> str:
    """``target_score`` or ``target_score:if[>=7]then[text]``."""

    match = TARGET_SCORE_PATTERN.match(parameters)
    if match is None:
        return str(target_score)
    condition, text = match.groups()
    return text if evaluate_score_condition(target_score, condition) else ""


@dataclass(frozen=True)
class TagLookup:
    table: str
    field: str
    filter_field: str = ""
    filter_value: str = ""
    modifier: str = ""

    @classmethod
    def parse(cls, parameters: str) -> Optional["TagLookup"]:
        parameters = SHORTHANDS.get(parameters, parameters)
        match = PARAMETER_PATTERN.match(parameters)
        if match is None:
            return None
        return cls(
            table=(match.group("table") or "").strip(),
            field=(match.group("field") or "").strip(),
            filter_field=(match.group("filter_field") or "").strip(),
            filter_value=(match.group("filter_value") or "").strip(),
            modifier=(match.group("modifier") or "").strip(),
        )


class _SubjectData:
    """Per-resolution memo so each subject row is loaded at most once."""

    def __init__(self, repository: FeedbackRepositoryInterface, subject: SubjectRef) -> None:
        self._repository = repository
        self.subject = subject
        self._tasks: dict[str, asyncio.Future[Any]] = {}

    def _once(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Awaitable[Any]:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
        return task

    async def attempt(self) -> Optional[AttemptInfo]:
        attempt_id = self.subject.attempt_id
        if attempt_id is None:
            return None
        return await self._once("attempt", lambda: self._repository.get_attempt(attempt_id))

    async def speech_uuid(self) -> Optional[str]:
        if self.subject.kind is SubjectKind.SPEECH:
            return self.subject.key
        attempt = await self.attempt()
        return attempt.speech_uuid if attempt else None

    async def speech(self) -> Optional[SpeechInfo]:
        uuid = await self.speech_uuid()
        if not uuid:
            return None
        return await self._once("speech", lambda: self._repository.get_speech(uuid))

    def cancel(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()


class MergeTagResolver:
    """Expand merge tags against the feedback store."""

    def __init__(
        self,
        repository: FeedbackRepositoryInterface,
        *,
        feedback_order: str = "desc",
        feedback_limit: int = 20,
    ) -> None:
        self._repository = repository
        self._feedback_order = feedback_order
        self._feedback_limit = feedback_limit

    async def resolve(
        self,
        template: str,
        subject: SubjectRef,
        *,
        feedback_style: str = "",
        guide_score: str = "",
        guide_feedback: str = "",
        target_score: str = "",
    ) -> ResolvedPrompt:
        matches = list(TAG_PATTERN.finditer(template or ""))
        if not matches:
            return SinglePrompt(template or "")

        specials = {
            "feedback_style": feedback_style,
            "guide_score": guide_score,
            "guide_feedback": guide_feedback,
        }
        data = _SubjectData(self._repository, subject)

        async def resolve_one(parameters: str) -> Any:
            if specials.get(parameters):
                return specials[parameters]
            if parameters.startswith("target_score") and target_score:
                return render_target_score(parameters, target_score)
            return await self._lookup(parameters, data)

        unique = list(dict.fromkeys(match.group("parameters").strip() for match in matches))
        try:
            values = await asyncio.gather(*(resolve_one(parameters) for parameters in unique))
        finally:
            data.cancel()
        contents = dict(zip(unique, values))

        list_lengths = [
            len(value) for value in contents.values() if isinstance(value, list) and value
        ]
        if not list_lengths:
            return SinglePrompt(TAG_PATTERN.sub(lambda m: self._replacement(m, contents), template))

        variants = []
        for index in range(min(list_lengths)):
            variants.append(
                TAG_PATTERN.sub(lambda m: self._replacement(m, contents, index), template)
            )
        return BatchPrompt(tuple(variants))

    @staticmethod
    def _replacement(match: re.Match[str], contents: dict[str, Any], index: int | None = None) -> str:
        content = contents.get(match.group("parameters").strip())
        if index is not None and isinstance(content, list) and content:
            return f"{match.group('prefix')}{_as_text(content[index])}{match.group('suffix')}"
        if is_empty(content):
            return ""
        return f"{match.group('prefix')}{_as_text(content)}{match.group('suffix')}"

    async def _lookup(self, parameters: str, data: _SubjectData) -> Any:
        lookup = TagLookup.parse(parameters)
        if lookup is None:
            logger.debug("Unresolvable merge tag %r", parameters)
            return None

        filter_value = lookup.filter_value
        if filter_value == "uuid":
            filter_value = data.subject.key

        handler = {
            "speech": self._speech_content,
            "speech_feedback": self._speech_feedback_content,
            "speech_attempt_feedback": self._attempt_feedback_content,
            "attempt": self._attempt_content,
        }.get(lookup.table)
        if handler is None:
            logger.debug("Unknown merge tag table %r", lookup.table)
            return None

        content = await handler(lookup.field, lookup.filter_field, filter_value, data)
        if not is_empty(content) and lookup.modifier:
            content = apply_modifier(content, lookup.modifier)
        return content

    async def _speech_content(
        self, field: str, filter_field: str, filter_value: str, data: _SubjectData
    ) -> Any:
        speech = await data.speech()
        if speech is None:
            return None
        if filter_field and filter_value and filter_field != "uuid":
            if str(getattr(speech, filter_field, "")) != filter_value:
                return None

        if field not in _TRANSCRIPT_FIELDS:
            return getattr(speech, field, None)

        transcriptions = [ref.transcription for ref in speech.audio_references if ref.transcription]
        if not transcriptions:
            return None

        if field in {"transcript", "transcripts"}:
            texts = [clean_transcript_text(item.get("text")) for item in transcriptions]
            return [text for text in texts if text] or None
        if field == "transcript_text":
            texts = [clean_transcript_text(item.get("text")) for item in transcriptions]
            return " ".join(text for text in texts if text) or None
        if field == "speaking_rate":
            return speaking_rate(transcriptions)

        formatter = format_with_pauses if field == "transcript_with_pause" else format_with_chunking
        formatted = [formatter(item) for item in transcriptions]
        return "\n\n".join(text for text in formatted if text) or None

    def _split_filter(self, filter_field: str, filter_value: str) -> tuple[Optional[str], dict[str, str]]:
        if not filter_field or not filter_value or filter_field == "uuid":
            return None, {}
        if filter_field == "feedback_criteria":
            return filter_value, {}
        return None, {filter_field: filter_value}

    async def _speech_feedback_content(
        self, field: str, filter_field: str, filter_value: str, data: _SubjectData
    ) -> Any:
        uuid = await data.speech_uuid()
        if not uuid:
            return None
        criteria, filters = self._split_filter(filter_field, filter_value)
        records = await self._repository.get_feedback_records(
            SubjectRef.speech(uuid),
            criteria,
            order=self._feedback_order,
            limit=self._feedback_limit,
            filters=filters,
            with_content=field if field in CONTENT_FIELDS else None,
        )
        for record in records:
            value = record.content(field) if field in CONTENT_FIELDS else getattr(record, field, None)
            if not is_empty(value):
                return value
        return None

    async def _attempt_feedback_content(
        self, field: str, filter_field: str, filter_value: str, data: _SubjectData
    ) -> Any:
        attempt_id = data.subject.attempt_id
        speech_uuid = data.subject.key if data.subject.kind is SubjectKind.SPEECH else None
        criteria, filters = self._split_filter(filter_field, filter_value)
        records = await self._repository.get_attempt_feedback_records(
            speech_uuid=speech_uuid,
            attempt_id=attempt_id,
            criteria=criteria,
            filters=filters,
        )

        by_attempt: dict[int, Any] = {}
        for record in records:
            value = getattr(record, field, None)
            key = int(record.subject_key)
            if key not in by_attempt and not is_empty(value):
                by_attempt[key] = value

        if not by_attempt:
            return None
        if attempt_id is not None:
            return by_attempt.get(attempt_id)
        if len(by_attempt) == 1:
            return next(iter(by_attempt.values()))
        return [by_attempt[key] for key in sorted(by_attempt)]

    async def _attempt_content(
        self, field: str, filter_field: str, filter_value: str, data: _SubjectData
    ) -> Any:
        attempt = await data.attempt()
        if attempt is None:
            return None
        audio = attempt.audio
        transcription = audio.transcription if audio else None

        if field == "title":
            return (audio.title if audio else None) or attempt.title or ""
        if field == "transcript":
            return clean_transcript_text(audio.transcript_text) if audio else None
        if field == "transcript_with_pause":
            return format_with_pauses(transcription)
        if field == "transcript_with_chunking":
            return format_with_chunking(transcription)
        if field == "speaking_rate":
            return speaking_rate([transcription]) if transcription else None
        if field == "question_title":
            return attempt.question_title or ""
        if field == "question_content":
            return attempt.question_content or ""
        return getattr(attempt, field, None)


__all__ = [
    "MergeTagResolver",
    "TAG_PATTERN",
    "TagLookup",
    "evaluate_score_condition",
    "is_empty",
    "render_target_score",
]
