"""Typed containers shared across the feedback pipeline.

These live in their own module so the resolver, executor and orchestrator can
import them without circular dependencies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional, Union

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")


def snake_upper(value: str) -> str:
    """``chain-of-thought`` -> ``CHAIN_OF_THOUGHT``."""

    return _NON_ALNUM.sub("_", value).upper()


class StepKind(str, Enum):
    """Pipeline stage kinds."""

    TRANSCRIBE = "transcribe"
    CHAIN_OF_THOUGHT = "chain-of-thought"
    SCORING = "scoring"
    FEEDBACK = "feedback"

    @classmethod
    def from_name(cls, name: str) -> "StepKind":
        """Map a configured step name to its kind; unknown names act as feedback."""

        try:
            return cls(name)
        except ValueError:
            return cls.FEEDBACK

    @property
    def content_field(self) -> str:
        return _CONTENT_FIELD_BY_KIND[self]


_CONTENT_FIELD_BY_KIND = {
    StepKind.TRANSCRIBE: "feedback_content",
    StepKind.CHAIN_OF_THOUGHT: "cot_content",
    StepKind.SCORING: "score_content",
    StepKind.FEEDBACK: "feedback_content",
}


class SubjectKind(str, Enum):
    SPEECH = "speech"
    ATTEMPT = "attempt"


@dataclass(frozen=True)
class SubjectRef:
    """The speech (by UUID) or attempt (by id) being evaluated."""

    kind: SubjectKind
    key: str

    @classmethod
    def speech(cls, uuid: str) -> "SubjectRef":
        return cls(SubjectKind.SPEECH, str(uuid))

    @classmethod
    def attempt(cls, attempt_id: int) -> "SubjectRef":
        return cls(SubjectKind.ATTEMPT, str(attempt_id))

    @property
    def attempt_id(self) -> int | None:
        if self.kind is not SubjectKind.ATTEMPT:
            return None
        return int(self.key)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.key}"


@dataclass(frozen=True)
class StepConfig:
    """Typed configuration for one step of a feed."""

    name: str
    provider: str = "google"
    model: str = "gemini-2.0-flash-lite"
    temperature: float = 0.7
    max_tokens: int = 2048
    prompts: Mapping[str, str] = field(default_factory=dict)
    transcription_prompt: str = ""
    enable_thinking: bool = False
    guided_choice: Optional[tuple[str, ...]] = None
    guided_regex: Optional[str] = None
    guided_json: Optional[Mapping[str, Any]] = None
    guided_json_by_language: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    score_regex: str = r"/\d+/"
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> StepKind:
        return StepKind.from_name(self.name)

    @property
    def event_name(self) -> str:
        return snake_upper(self.name)

    def prompt_for(self, language: str, default_language: str = "en") -> str:
        """Prompt template for ``language``, falling back to the default language."""

        prompt = self.prompts.get(language) or self.prompts.get(default_language)
        return prompt or "Hello."

    def guided_json_for(self, language: str) -> Optional[Mapping[str, Any]]:
        return self.guided_json_by_language.get(language) or self.guided_json


@dataclass(frozen=True)
class FeedConfig:
    """A named, ordered list of steps for one feedback criterion."""

    id: int
    title: str = ""
    description: str = ""
    apply_to: SubjectKind = SubjectKind.SPEECH
    feedback_criteria: str = "general"
    steps: tuple[StepConfig, ...] = ()
    process_order: int = 0


@dataclass(frozen=True)
class ProviderCallSpec:
    """One outbound AI call, built per step execution."""

    provider: str
    model: str
    prompt: str
    temperature: float = 0.7
    max_tokens: int = 2048
    guided_choice: Optional[tuple[str, ...]] = None
    guided_regex: Optional[str] = None
    guided_json: Optional[Mapping[str, Any]] = None
    enable_thinking: bool = False
    score_regex: Optional[str] = None

    def with_prompt(self, prompt: str) -> "ProviderCallSpec":
        return replace(self, prompt=prompt)


@dataclass(frozen=True)
class ProviderResponse:
    """Content returned by a chat call."""

    content: str
    reasoning_content: Optional[str] = None
    score: Optional[str] = None


@dataclass(frozen=True)
class SinglePrompt:
    text: str


@dataclass(frozen=True)
class BatchPrompt:
    texts: tuple[str, ...]


ResolvedPrompt = Union[SinglePrompt, BatchPrompt]


@dataclass(frozen=True)
class FeedRequest:
    """Caller-supplied parameters for one feed run."""

    subject: SubjectRef
    language: str = "en"
    feedback_style: str = ""
    guide_score: str = ""
    guide_feedback: str = ""
    target_score: str = ""
    refetch: str = ""
    user_id: Optional[int] = None

    @property
    def source(self) -> str:
        return "human" if self.guide_score or self.guide_feedback else "ai"

    def bypasses_cache(self, step_name: str) -> bool:
        return self.refetch == "all" or self.refetch == step_name


__all__ = [
    "BatchPrompt",
    "FeedConfig",
    "FeedRequest",
    "ProviderCallSpec",
    "ProviderResponse",
    "ResolvedPrompt",
    "SinglePrompt",
    "StepConfig",
    "StepKind",
    "SubjectKind",
    "SubjectRef",
    "snake_upper",
]
