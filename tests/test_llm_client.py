"""Provider client against mocked HTTP backends."""

import asyncio
import json

import httpx
import pytest

from speaking_feedback.config.settings import (
    AzureOpenAIConfig,
    GoogleConfig,
    OpenAIConfig,
    PhonemizerConfig,
    Settings,
    VllmConfig,
)
from speaking_feedback.domain.errors import ProviderError
from speaking_feedback.domain.models import AudioRef
from speaking_feedback.pipelines.feedback import ProviderCallSpec
from speaking_feedback.services import ProviderClient, resolve_endpoint

CONFIG = Settings(
    openai=OpenAIConfig(base_url="https://openai.test/v1/", api_key="sk-test"),
    google=GoogleConfig(api_key=None),
    vllm=VllmConfig(base_url="http://vllm.test/v1/"),
    azure=AzureOpenAIConfig(endpoint="https://speaking.openai.azure.com", api_key="az-key"),
    phonemizer=PhonemizerConfig(base_url="http://phonemizer.test/"),
)


def _completion(content, reasoning=None):
    message = {"role": "assistant", "content": content}
    if reasoning:
        message["reasoning_content"] = reasoning
    return {"choices": [{"message": message}]}


def _client(handler):
    return ProviderClient(
        config=CONFIG,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        max_concurrency=4,
    )


async def test_call_once_posts_chat_completion():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion("Nice answer.", "Clear ideas."))

    client = _client(handler)
    response = await client.call_once(
        ProviderCallSpec(provider="open-ai", model="gpt-4o-mini", prompt="Rate this", max_tokens=64)
    )

    assert response.content == "Nice answer."
    assert response.reasoning_content == "Clear ideas."
    assert response.score is None
    assert seen["url"] == "https://openai.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["messages"] == [{"role": "user", "content": "Rate this"}]
    assert seen["body"]["max_tokens"] == 64
    assert seen["body"]["stream"] is False


async def test_guided_decoding_fields_for_vllm():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion("7"))

    response = await _client(handler).call_once(
        ProviderCallSpec(
            provider="vllm",
            model="qwen3",
            prompt="Score",
            guided_choice=("6", "7"),
            score_regex=r"/\d/",
        )
    )

    assert seen["body"]["guided_choice"] == ["6", "7"]
    assert seen["body"]["chat_template_kwargs"] == {"enable_thinking": False}
    assert response.score == "7"


async def test_error_status_raises_provider_error():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

    with pytest.raises(ProviderError) as info:
        await _client(handler).call_once(ProviderCallSpec(provider="open-ai", model="m", prompt="p"))

    assert info.value.status_code == 429
    assert info.value.message == "Rate limit reached"


async def test_missing_credentials_raise_before_any_request():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ProviderError, match="google"):
        await _client(handler).call_once(ProviderCallSpec(provider="google", model="m", prompt="p"))


async def test_call_stream_collects_deltas():
    lines = [
        {"choices": [{"delta": {"reasoning_content": "Hmm. "}}]},
        {"choices": [{"delta": {"content": "Band "}}]},
        {"choices": [{"delta": {"content": "6"}}]},
    ]
    body = "".join(f"data: {json.dumps(line)}\n\n" for line in lines) + "data: [DONE]\n\n"

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    chunks = []
    response = await _client(handler).call_stream(
        ProviderCallSpec(provider="open-ai", model="m", prompt="p", score_regex=r"/\d+/"),
        lambda text, is_reasoning: chunks.append((text, is_reasoning)),
    )

    assert chunks == [("Hmm. ", True), ("Band ", False), ("6", False)]
    assert response.content == "Band 6"
    assert response.reasoning_content == "Hmm. "
    assert response.score == "6"


async def test_call_stream_reports_status_error():
    def handler(request):
        return httpx.Response(500, json={"message": "model crashed"})

    with pytest.raises(ProviderError, match="model crashed"):
        await _client(handler).call_stream(ProviderCallSpec(provider="open-ai", model="m", prompt="p"))


async def test_call_parallel_keeps_input_order():
    delays = {"first": 0.05, "second": 0.02, "third": 0.0}

    async def handler(request):
        prompt = json.loads(request.content)["messages"][0]["content"]
        await asyncio.sleep(delays[prompt])
        return httpx.Response(200, json=_completion(f"answer to {prompt}"))

    progress = []
    spec = ProviderCallSpec(provider="open-ai", model="m", prompt="")
    responses = await _client(handler).call_parallel(
        [spec.with_prompt(prompt) for prompt in delays],
        on_result=lambda index, response, processed, total: progress.append((index, processed, total)),
    )

    assert [response.content for response in responses] == [
        "answer to first",
        "answer to second",
        "answer to third",
    ]
    assert [item[0] for item in progress] == [2, 1, 0]
    assert [item[1] for item in progress] == [1, 2, 3]


async def test_call_parallel_fails_fast():
    async def handler(request):
        prompt = json.loads(request.content)["messages"][0]["content"]
        if prompt == "bad":
            return httpx.Response(503, json={"error": "overloaded"})
        await asyncio.sleep(1)
        return httpx.Response(200, json=_completion("late"))

    spec = ProviderCallSpec(provider="open-ai", model="m", prompt="")
    with pytest.raises(ProviderError, match="overloaded"):
        await asyncio.wait_for(
            _client(handler).call_parallel([spec.with_prompt("slow"), spec.with_prompt("bad")]),
            timeout=0.5,
        )


async def test_transcribe_uploads_audio(tmp_path):
    audio_file = tmp_path / "answer.mp3"
    audio_file.write_bytes(b"ID3 fake mp3")
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"text": "I like reading.", "words": []})

    result = await _client(handler).transcribe_batch(
        [AudioRef(id=7, file_path=str(audio_file))],
        provider="open-ai",
        model="whisper-1",
        prompt="IELTS answer",
    )

    assert result == {7: {"text": "I like reading.", "words": []}}
    assert seen["url"] == "https://openai.test/v1/audio/transcriptions"
    assert b"ID3 fake mp3" in seen["body"]
    assert b"verbose_json" in seen["body"]
    assert b"IELTS answer" in seen["body"]


async def test_transcribe_missing_file_is_provider_error(tmp_path):
    with pytest.raises(ProviderError, match="media 3"):
        await _client(lambda request: httpx.Response(200)).transcribe(
            AudioRef(id=3, file_path=str(tmp_path / "gone.mp3")),
            provider="open-ai",
            model="whisper-1",
        )


async def test_phonemize_and_text_to_speech():
    def handler(request):
        if request.url.path == "/phonemize":
            assert json.loads(request.content) == {"text": "hello", "language": "en-us"}
            return httpx.Response(200, json={"phonemes": "həloʊ", "tokens": ["hello"]})
        assert request.url.path == "/v1/audio/speech"
        assert json.loads(request.content)["voice"] == "nova"
        return httpx.Response(200, content=b"mp3-bytes")

    client = _client(handler)

    assert await client.phonemize("hello") == {"phonemes": "həloʊ", "tokens": ["hello"]}
    assert await client.text_to_speech("hello", voice="nova") == b"mp3-bytes"


def test_azure_endpoint_is_deployment_scoped():
    endpoint = resolve_endpoint("azure", CONFIG)

    assert endpoint.url("chat/completions", model="gpt-4o") == (
        "https://speaking.openai.azure.com/openai/deployments/gpt-4o/chat/completions"
    )
    assert endpoint.headers == {"api-key": "az-key"}
    assert endpoint.params == {"api-version": "2024-10-21"}


def test_unknown_provider_falls_back_to_openai():
    assert resolve_endpoint("mystery", CONFIG).provider == "open-ai"
