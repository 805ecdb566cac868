"""Run one configured step against one subject.

Flow per step:

1. ``transcribe`` steps transcribe the subject's audio references, reusing
   transcriptions cached on each reference.
2. Other steps reject unknown subjects, then consult
   :class:`ExistingContentCache` unless the request asks to refetch them.
3. The language-specific prompt is expanded by :class:`MergeTagResolver`; a
   batch result fans out through ``call_parallel``.
4. Scoring steps replace the model output with the guide score or with the
   score extracted by the step's regex.
5. Output (and any reasoning) is appended to the feedback store.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from speaking_feedback.application.interfaces import FeedbackRepositoryInterface
from speaking_feedback.domain.errors import (
    PersistenceError,
    ProviderError,
    StepConfigurationError,
    StepExecutionError,
    SubjectNotFoundError,
    SubjectScopeError,
)
from speaking_feedback.domain.models import FeedbackDraft
from speaking_feedback.telemetry import record_step_outcome

from .cache import ExistingContentCache
from .context import PipelineContext
from .merge_tags import MergeTagResolver
from .modifiers import FLATTEN_SEPARATOR
from .scoring import extract_score
from .types import (
    BatchPrompt,
    FeedRequest,
    ProviderCallSpec,
    ProviderResponse,
    StepConfig,
    StepKind,
    SubjectKind,
    SubjectRef,
    snake_upper,
)

logger = logging.getLogger("speaking_feedback.pipeline")

COT_EVENT = snake_upper(StepKind.CHAIN_OF_THOUGHT.value)
COT_FIELD = StepKind.CHAIN_OF_THOUGHT.content_field


def _error_payload(title: str, message: str) -> dict[str, str]:
    return {"title": title, "message": message, "ctaTitle": "Try Again", "ctaLink": "#"}


async def ensure_subject(
    repository: FeedbackRepositoryInterface,
    subject: SubjectRef,
    scope: Optional[SubjectKind] = None,
) -> None:
    """Raise unless ``subject`` exists and is the kind of subject the feed applies to."""

    if scope is not None and subject.kind is not scope:
        raise SubjectScopeError(scope.value, subject.kind.value)
    if await repository.get_audio_references(subject) is None:
        raise SubjectNotFoundError(subject)


class StepExecutor:
    """Execute single steps for one feed run."""

    def __init__(self, context: PipelineContext) -> None:
        self._context = context
        self._known_subjects: set[SubjectRef] = set()
        self._cache = ExistingContentCache(
            context.repository,
            order=context.feedback_order,
        )
        self._resolver = MergeTagResolver(
            context.repository,
            feedback_order=context.feedback_order,
            feedback_limit=context.feedback_limit,
        )

    async def execute(self, step: StepConfig, *, criteria: str, request: FeedRequest) -> str:
        """Run ``step`` and return its primary content."""

        if step.kind is StepKind.TRANSCRIBE:
            return await self._transcribe(step, request)

        if request.subject not in self._known_subjects:
            await ensure_subject(self._context.repository, request.subject)
            self._known_subjects.add(request.subject)

        emitter = self._context.emitter
        field = step.kind.content_field
        event = step.event_name

        if not request.bypasses_cache(step.name):
            existing = await self._cache.get_existing(request.subject, criteria, field)
            if existing:
                if step.enable_thinking:
                    existing_cot = await self._cache.get_existing(
                        request.subject, criteria, COT_FIELD
                    )
                    if existing_cot:
                        emitter.data(COT_EVENT, {"content": existing_cot, "reused": True})
                    emitter.done(COT_EVENT)
                emitter.data(event, {"content": existing, "reused": True})
                emitter.done(event)
                record_step_outcome(step.name, "reused")
                logger.info("Step %s reused stored %s for %s", step.name, field, request.subject)
                return existing

        language = (request.language or self._context.default_language).lower()
        template = step.prompt_for(language, self._context.default_language)
        prompt = await self._resolver.resolve(
            template,
            request.subject,
            feedback_style=request.feedback_style,
            guide_score=request.guide_score,
            guide_feedback=request.guide_feedback,
            target_score=request.target_score,
        )
        spec = ProviderCallSpec(
            provider=step.provider,
            model=step.model,
            prompt="",
            temperature=step.temperature,
            max_tokens=step.max_tokens,
            guided_choice=step.guided_choice,
            guided_regex=step.guided_regex,
            guided_json=step.guided_json_for(language),
            enable_thinking=step.enable_thinking,
            score_regex=step.score_regex if step.kind is StepKind.SCORING else None,
        )

        streamed = False
        try:
            if isinstance(prompt, BatchPrompt):
                response = await self._call_batch(step, spec, prompt)
            else:
                streamed = self._context.stream_responses
                response = await self._call_single(step, spec.with_prompt(prompt.text), streamed)
        except ProviderError as exc:
            title = (
                "Parallel API Request Failed"
                if isinstance(prompt, BatchPrompt)
                else "API Request Failed"
            )
            emitter.error(f"{event}_ERROR", _error_payload(title, exc.message))
            record_step_outcome(step.name, "failed")
            logger.warning("Step %s failed for %s: %s", step.name, request.subject, exc.message)
            raise StepExecutionError(
                step.name, exc.message, status_code=exc.status_code
            ) from exc

        content = response.content
        if step.kind is StepKind.SCORING:
            if request.guide_score:
                emitter.data(
                    event,
                    {"content": request.guide_score, "raw_content": content, "guided": True},
                )
                content = request.guide_score
            else:
                score = response.score or extract_score(content, step.score_regex)
                emitter.data(
                    event,
                    {"content": score, "raw_content": content, "regex_used": step.score_regex},
                )
                content = score
        elif not streamed:
            if response.reasoning_content:
                emitter.data(COT_EVENT, {"content": response.reasoning_content})
            emitter.data(event, {"content": content})

        reasoning = response.reasoning_content
        # A chain-of-thought step keeps its own output as the newest cot_content row.
        if reasoning and field == COT_FIELD:
            await self._persist(step, event, COT_FIELD, reasoning, criteria, request)
        await self._persist(step, event, field, content, criteria, request)
        if reasoning and field != COT_FIELD:
            await self._persist(step, event, COT_FIELD, reasoning, criteria, request)

        emitter.done(event)
        record_step_outcome(step.name, "generated")
        return content

    async def _call_single(
        self, step: StepConfig, spec: ProviderCallSpec, stream: bool
    ) -> ProviderResponse:
        client = self._context.client
        if not stream:
            return await client.call_once(spec)

        emitter = self._context.emitter
        event = step.event_name

        def on_chunk(text: str, is_reasoning: bool) -> None:
            emitter.data(
                COT_EVENT if is_reasoning else event,
                {"delta": text, "step_type": step.name},
            )

        return await client.call_stream(spec, on_chunk)

    async def _call_batch(
        self, step: StepConfig, spec: ProviderCallSpec, prompt: BatchPrompt
    ) -> ProviderResponse:
        emitter = self._context.emitter
        total = len(prompt.texts)
        emitter.data(
            "batch_processing",
            {
                "total_prompts": total,
                "message": "Starting parallel processing of multiple prompts",
            },
        )

        def on_result(index: int, _: ProviderResponse, processed: int, count: int) -> None:
            emitter.data(
                "parallel_progress",
                {
                    "index": index,
                    "total": count,
                    "processed": processed,
                    "progress": round(processed / count * 100) if count else 100,
                },
            )

        responses = await self._context.client.call_parallel(
            [spec.with_prompt(text) for text in prompt.texts],
            on_result=on_result,
        )
        reasoning = [r.reasoning_content for r in responses if r.reasoning_content]
        logger.info("Step %s completed %d parallel calls", step.name, total)
        return ProviderResponse(
            content=FLATTEN_SEPARATOR.join(r.content for r in responses),
            reasoning_content=FLATTEN_SEPARATOR.join(reasoning) or None,
        )

    async def _persist(
        self,
        step: StepConfig,
        event: str,
        field: str,
        content: str,
        criteria: str,
        request: FeedRequest,
    ) -> Optional[int]:
        if not content or not content.strip():
            logger.info("Step %s produced empty %s; nothing stored", step.name, field)
            return None

        draft = FeedbackDraft(
            subject_kind=request.subject.kind.value,
            subject_key=request.subject.key,
            feedback_criteria=criteria,
            feedback_language=request.language or self._context.default_language,
            source=request.source,
            field=field,
            content=content,
            created_by=request.user_id or self._context.user_id,
        )
        try:
            return await self._context.repository.create_feedback_record(draft)
        except PersistenceError as exc:
            self._context.emitter.error(
                f"{event}_ERROR", _error_payload("Saving Feedback Failed", str(exc))
            )
            record_step_outcome(step.name, "failed")
            raise

    async def _transcribe(self, step: StepConfig, request: FeedRequest) -> str:
        repository = self._context.repository
        emitter = self._context.emitter
        subject = request.subject

        references = await repository.get_audio_references(subject)
        if references is None:
            raise SubjectNotFoundError(str(subject))
        if not references:
            raise StepConfigurationError("No audio files found for this recording.")

        force = request.bypasses_cache(step.name)
        results: dict[int, Any] = {}
        pending = []
        for reference in references:
            cached = None
            if not force:
                cached = reference.transcription or await repository.get_cached_transcription(
                    reference.id
                )
            if cached:
                results[reference.id] = dict(cached)
                emitter.data(
                    "TRANSCRIPTION_CACHE",
                    {"media_id": reference.id, "message": "Using cached transcription"},
                )
            else:
                pending.append(reference)

        if pending:
            emitter.data(
                "TRANSCRIPTION_PROCESSING",
                {"files_to_process": len(pending), "message": "Processing new transcriptions"},
            )
            try:
                fresh = await self._context.client.transcribe_batch(
                    pending,
                    provider=step.provider,
                    model=step.model,
                    prompt=step.transcription_prompt,
                    response_format="verbose_json",
                    granularities=("word",),
                )
            except ProviderError as exc:
                emitter.error(
                    f"{step.event_name}_ERROR",
                    _error_payload("Transcription Failed", exc.message),
                )
                record_step_outcome(step.name, "failed")
                raise StepExecutionError(
                    step.name, exc.message, status_code=exc.status_code
                ) from exc

            for reference in pending:
                transcription = fresh.get(reference.id) or {}
                results[reference.id] = transcription
                if transcription.get("text"):
                    await repository.set_cached_transcription(reference.id, transcription)

        combined = "\n\n".join(
            str(results[reference.id].get("text"))
            for reference in references
            if results.get(reference.id, {}).get("text")
        )
        emitter.data("TRANSCRIPTION_DATA", {str(key): value for key, value in results.items()})
        emitter.done(step.event_name)
        record_step_outcome(step.name, "generated" if pending else "reused")
        logger.info(
            "Transcribed %d of %d references for %s", len(pending), len(references), subject
        )
        return combined


__all__ = ["StepExecutor"]
