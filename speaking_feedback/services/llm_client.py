"""Uniform client for chat, transcription, phonemization and speech backends."""

from __future__ import annotations

import asyncio
import inspect
import logging
import mimetypes
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence
from xml.sax.saxutils import escape

import httpx
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from speaking_feedback.application.interfaces import ProviderClientInterface
from speaking_feedback.config.settings import Settings, settings as default_settings
from speaking_feedback.domain.errors import ProviderError
from speaking_feedback.domain.models import AudioRef
from speaking_feedback.pipelines.feedback.scoring import extract_score
from speaking_feedback.pipelines.feedback.types import ProviderCallSpec, ProviderResponse
from speaking_feedback.telemetry import observe_provider_call

from .aws import create_boto3_client
from .providers import (
    BEDROCK_PROVIDERS,
    POLLY_PROVIDERS,
    build_chat_payload,
    error_message,
    normalise_provider,
    parse_chat_completion,
    parse_stream_line,
    resolve_endpoint,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str, bool], Optional[Awaitable[None]]]
ResultCallback = Callable[[int, ProviderResponse, int, int], Optional[Awaitable[None]]]


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class ProviderClient(ProviderClientInterface):
    """Call AI backends with one call shape.

    Fan-out methods share one semaphore sized by ``max_concurrent_requests``.
    """

    def __init__(
        self,
        *,
        config: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._config = config or default_settings
        pipeline = self._config.pipeline
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(pipeline.read_timeout, connect=pipeline.connect_timeout),
            transport=httpx.AsyncHTTPTransport(retries=pipeline.connect_retries),
        )
        self._semaphore = asyncio.Semaphore(max_concurrency or pipeline.max_concurrent_requests)
        self._bedrock: Any = None
        self._polly: Any = None

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------ chat

    async def call_once(self, spec: ProviderCallSpec) -> ProviderResponse:
        """Single non-streaming chat call."""

        provider = normalise_provider(spec.provider)
        started = time.perf_counter()
        try:
            if provider in BEDROCK_PROVIDERS:
                response = await self._bedrock_converse(spec)
            else:
                endpoint = resolve_endpoint(provider, self._config)
                body = await self._post_json(
                    endpoint.url("chat/completions", model=spec.model),
                    build_chat_payload(spec, stream=False),
                    headers=endpoint.headers,
                    params=endpoint.params,
                    provider=provider,
                )
                response = parse_chat_completion(body)
        except ProviderError:
            observe_provider_call(provider, "chat", "error", time.perf_counter() - started)
            raise
        observe_provider_call(provider, "chat", "ok", time.perf_counter() - started)
        return self._with_score(response, spec)

    async def call_stream(
        self,
        spec: ProviderCallSpec,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderResponse:
        """Streaming chat call; ``on_chunk(text, is_reasoning)`` sees each delta."""

        provider = normalise_provider(spec.provider)
        if provider in BEDROCK_PROVIDERS:
            response = await self.call_once(spec)
            if on_chunk is not None and response.content:
                await _maybe_await(on_chunk(response.content, False))
            return response

        endpoint = resolve_endpoint(provider, self._config)
        started = time.perf_counter()
        content: list[str] = []
        reasoning: list[str] = []
        try:
            async with self._http.stream(
                "POST",
                endpoint.url("chat/completions", model=spec.model),
                json=build_chat_payload(spec, stream=True),
                headers={**endpoint.headers, "Accept": "text/event-stream"},
                params=endpoint.params,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._status_error(response, provider)
                async for line in response.aiter_lines():
                    text, thought, done = parse_stream_line(line)
                    if done:
                        break
                    if thought:
                        reasoning.append(thought)
                        if on_chunk is not None:
                            await _maybe_await(on_chunk(thought, True))
                    if text:
                        content.append(text)
                        if on_chunk is not None:
                            await _maybe_await(on_chunk(text, False))
        except httpx.HTTPError as exc:
            observe_provider_call(provider, "chat_stream", "error", time.perf_counter() - started)
            raise ProviderError(f"Request to {provider} failed: {exc}", provider=provider) from exc
        except ProviderError:
            observe_provider_call(provider, "chat_stream", "error", time.perf_counter() - started)
            raise

        observe_provider_call(provider, "chat_stream", "ok", time.perf_counter() - started)
        result = ProviderResponse(
            content="".join(content),
            reasoning_content="".join(reasoning) or None,
        )
        return self._with_score(result, spec)

    async def call_parallel(
        self,
        specs: Sequence[ProviderCallSpec],
        *,
        on_result: ResultCallback | None = None,
    ) -> list[ProviderResponse]:
        """Run ``specs`` concurrently; results keep input order.

        The first failure cancels the remaining calls and is re-raised.
        """

        total = len(specs)
        processed = 0

        async def run(index: int, spec: ProviderCallSpec) -> ProviderResponse:
            nonlocal processed
            async with self._semaphore:
                response = await self.call_once(spec)
            processed += 1
            if on_result is not None:
                await _maybe_await(on_result(index, response, processed, total))
            return response

        return await self._gather_fail_fast(run(index, spec) for index, spec in enumerate(specs))

    # --------------------------------------------------------- transcription

    async def transcribe(
        self,
        audio: AudioRef,
        *,
        provider: str,
        model: str,
        prompt: str = "",
        response_format: str = "verbose_json",
        granularities: Sequence[str] = ("word",),
    ) -> dict[str, Any]:
        """Transcribe one audio reference and return the provider payload."""

        provider = normalise_provider(provider)
        endpoint = resolve_endpoint(provider, self._config)
        path = Path(audio.file_path)
        try:
            audio_bytes = await run_in_threadpool(path.read_bytes)
        except OSError as exc:
            raise ProviderError(f"Audio file unavailable for media {audio.id}: {exc}") from exc

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        data: dict[str, Any] = {"model": model, "response_format": response_format}
        if prompt:
            data["prompt"] = prompt
        if granularities:
            data["timestamp_granularities[]"] = list(granularities)

        started = time.perf_counter()
        try:
            response = await self._http.post(
                endpoint.url("audio/transcriptions", model=model),
                data=data,
                files={"file": (path.name, audio_bytes, content_type)},
                headers=endpoint.headers,
                params=endpoint.params,
            )
        except httpx.HTTPError as exc:
            observe_provider_call(provider, "transcribe", "error", time.perf_counter() - started)
            raise ProviderError(f"Request to {provider} failed: {exc}", provider=provider) from exc

        if response.status_code >= 400:
            observe_provider_call(provider, "transcribe", "error", time.perf_counter() - started)
            raise self._status_error(response, provider)
        observe_provider_call(provider, "transcribe", "ok", time.perf_counter() - started)

        if response_format in {"json", "verbose_json"}:
            try:
                return response.json()
            except ValueError as exc:
                raise ProviderError("Malformed transcription response", provider=provider) from exc
        return {"text": response.text}

    async def transcribe_batch(
        self,
        references: Sequence[AudioRef],
        **options: Any,
    ) -> dict[int, dict[str, Any]]:
        """Transcribe references concurrently, keyed by reference id."""

        async def run(reference: AudioRef) -> dict[str, Any]:
            async with self._semaphore:
                return await self.transcribe(reference, **options)

        results = await self._gather_fail_fast(run(reference) for reference in references)
        return {reference.id: result for reference, result in zip(references, results)}

    # --------------------------------------------------------- phonemization

    async def phonemize(self, text: str, language: str = "en-us") -> dict[str, Any]:
        phonemizer = self._config.phonemizer
        api_key = phonemizer.api_key.get_secret_value() if phonemizer.api_key else None
        url = f"{phonemizer.base_url.rstrip('/')}/phonemize"
        body = await self._post_json(
            url,
            {"text": text, "language": language},
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            provider="phonemizer",
        )
        if not isinstance(body, dict) or "phonemes" not in body:
            raise ProviderError("Malformed phonemize response", provider="phonemizer")
        return {"phonemes": body["phonemes"], "tokens": body.get("tokens", [])}

    # -------------------------------------------------------- text to speech

    async def text_to_speech(
        self,
        text: str,
        *,
        provider: str = "open-ai",
        model: str = "tts-1",
        voice: str = "alloy",
        response_format: str = "mp3",
        speed: float = 1.0,
    ) -> bytes:
        provider = normalise_provider(provider)
        started = time.perf_counter()
        if provider in POLLY_PROVIDERS:
            try:
                audio = await self._polly_synthesize(text, voice, response_format, speed)
            except ProviderError:
                observe_provider_call(provider, "tts", "error", time.perf_counter() - started)
                raise
            observe_provider_call(provider, "tts", "ok", time.perf_counter() - started)
            return audio

        endpoint = resolve_endpoint(provider, self._config)
        try:
            response = await self._http.post(
                endpoint.url("audio/speech", model=model),
                json={
                    "model": model,
                    "input": text,
                    "voice": voice,
                    "response_format": response_format,
                    "speed": speed,
                },
                headers=endpoint.headers,
                params=endpoint.params,
            )
        except httpx.HTTPError as exc:
            observe_provider_call(provider, "tts", "error", time.perf_counter() - started)
            raise ProviderError(f"Request to {provider} failed: {exc}", provider=provider) from exc
        if response.status_code >= 400:
            observe_provider_call(provider, "tts", "error", time.perf_counter() - started)
            raise self._status_error(response, provider)
        observe_provider_call(provider, "tts", "ok", time.perf_counter() - started)
        return response.content

    # ------------------------------------------------------------- internals

    @staticmethod
    def _with_score(response: ProviderResponse, spec: ProviderCallSpec) -> ProviderResponse:
        if not spec.score_regex:
            return response
        return ProviderResponse(
            content=response.content,
            reasoning_content=response.reasoning_content,
            score=extract_score(response.content, spec.score_regex),
        )

    @staticmethod
    async def _gather_fail_fast(coroutines: Any) -> list[Any]:
        tasks = [asyncio.ensure_future(coroutine) for coroutine in coroutines]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    @staticmethod
    def _status_error(response: httpx.Response, provider: str) -> ProviderError:
        try:
            body = response.json()
        except ValueError:
            body = response.text
        fallback = f"{provider} returned HTTP {response.status_code}"
        message = error_message(body, fallback)
        logger.warning("Provider %s error %s: %s", provider, response.status_code, message)
        return ProviderError(message, status_code=response.status_code, provider=provider)

    async def _post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str],
        params: Mapping[str, str] | None = None,
        provider: str,
    ) -> Any:
        try:
            response = await self._http.post(url, json=payload, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Request to {provider} failed: {exc}", provider=provider) from exc
        if response.status_code >= 400:
            raise self._status_error(response, provider)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"Malformed response from {provider}", provider=provider) from exc

    async def _bedrock_converse(self, spec: ProviderCallSpec) -> ProviderResponse:
        if self._bedrock is None:
            self._bedrock = create_boto3_client(
                "bedrock-runtime", region_name=self._config.bedrock.region
            )
        client = self._bedrock
        inference = {
            "maxTokens": spec.max_tokens,
            "temperature": spec.temperature,
            "topP": self._config.bedrock.top_p,
        }

        def _call() -> ProviderResponse:
            response = client.converse(
                modelId=spec.model or self._config.bedrock.model_id,
                messages=[{"role": "user", "content": [{"text": spec.prompt}]}],
                inferenceConfig=inference,
            )
            blocks = response.get("output", {}).get("message", {}).get("content", [])
            texts = [block["text"] for block in blocks if block.get("text")]
            thoughts = [
                block["reasoningContent"]["reasoningText"].get("text", "")
                for block in blocks
                if block.get("reasoningContent", {}).get("reasoningText")
            ]
            return ProviderResponse(
                content="\n".join(texts).strip(),
                reasoning_content="\n".join(thoughts).strip() or None,
            )

        try:
            return await run_in_threadpool(_call)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - network call
            raise ProviderError(str(exc), provider="bedrock") from exc

    async def _polly_synthesize(
        self, text: str, voice: str, response_format: str, speed: float
    ) -> bytes:
        if self._polly is None:
            self._polly = create_boto3_client("polly", region_name=self._config.polly.region)
        client = self._polly
        output_format = {"mp3": "mp3", "ogg": "ogg_vorbis", "opus": "ogg_vorbis", "pcm": "pcm"}.get(
            response_format, "mp3"
        )
        request: dict[str, Any] = {
            "Text": text,
            "VoiceId": voice or self._config.polly.default_voice_id,
            "OutputFormat": output_format,
            "Engine": self._config.polly.engine,
        }
        if speed and speed != 1.0:
            request["Text"] = f'<speak><prosody rate="{int(speed * 100)}%">{escape(text)}</prosody></speak>'
            request["TextType"] = "ssml"

        def _call() -> bytes:
            result = client.synthesize_speech(**request)
            stream = result.get("AudioStream")
            if stream is None:
                raise ProviderError("Polly returned no audio stream", provider="polly")
            return stream.read()

        try:
            return await run_in_threadpool(_call)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - network call
            raise ProviderError(str(exc), provider="polly") from exc


__all__ = ["ProviderClient", "ProviderError"]
