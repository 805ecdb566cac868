"""Endpoint resolution and request/response shaping per AI provider.

Every chat-capable provider except Bedrock speaks the OpenAI wire format;
they differ in base URL, authentication header and which guided-decoding
options they accept.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from speaking_feedback.config.settings import Settings, settings as default_settings
from speaking_feedback.domain.errors import ProviderError
from speaking_feedback.pipelines.feedback.types import ProviderCallSpec, ProviderResponse

logger = logging.getLogger(__name__)

STREAM_DONE = "[DONE]"

# Providers that accept vLLM-style guided decoding fields in the body.
GUIDED_DECODING_PROVIDERS = {"vllm", "home-server"}
BEDROCK_PROVIDERS = {"bedrock", "aws-bedrock"}
POLLY_PROVIDERS = {"polly", "aws-polly"}


@dataclass(frozen=True)
class ProviderEndpoint:
    provider: str
    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    deployment_scoped: bool = False

    def url(self, path: str, *, model: Optional[str] = None) -> str:
        base = self.base_url.rstrip("/")
        if self.deployment_scoped:
            return f"{base}/openai/deployments/{model}/{path}"
        return f"{base}/{path}"


def _secret(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.get_secret_value() if hasattr(value, "get_secret_value") else str(value)


def _bearer(api_key: Optional[str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def normalise_provider(provider: str) -> str:
    name = (provider or "").strip().lower()
    return "open-ai" if name in {"openai", "open-ai", ""} else name


def resolve_endpoint(provider: str, config: Settings | None = None) -> ProviderEndpoint:
    """Map a provider identity to its base URL and credentials.

    Unknown identities use the OpenAI endpoint.
    """

    config = config or default_settings
    name = normalise_provider(provider)

    if name == "google":
        api_key = _secret(config.google.api_key)
        if not api_key:
            raise ProviderError("API key not found for provider: google", provider=name)
        return ProviderEndpoint(name, config.google.base_url, _bearer(api_key))
    if name == "azure":
        api_key = _secret(config.azure.api_key)
        if not config.azure.endpoint or not api_key:
            raise ProviderError("Azure OpenAI endpoint or API key is not configured", provider=name)
        return ProviderEndpoint(
            name,
            config.azure.endpoint,
            {"api-key": api_key},
            {"api-version": config.azure.api_version},
            deployment_scoped=True,
        )
    if name == "vllm":
        return ProviderEndpoint(name, config.vllm.base_url, _bearer(_secret(config.vllm.api_key)))
    if name == "home-server":
        return ProviderEndpoint(
            name, config.home_server.base_url, _bearer(_secret(config.home_server.api_key))
        )
    if name == "open-key-ai":
        return ProviderEndpoint(
            name, config.open_key.base_url, _bearer(_secret(config.open_key.api_key))
        )

    if name != "open-ai":
        logger.warning("Unknown provider %r; falling back to OpenAI", provider)
    api_key = _secret(config.openai.api_key)
    if not api_key:
        raise ProviderError(f"API key not found for provider: {name}", provider=name)
    return ProviderEndpoint("open-ai", config.openai.base_url, _bearer(api_key))


def build_chat_payload(spec: ProviderCallSpec, *, stream: bool) -> dict[str, Any]:
    """OpenAI-style chat/completions body including guided decoding options."""

    provider = normalise_provider(spec.provider)
    payload: dict[str, Any] = {
        "model": spec.model,
        "messages": [{"role": "user", "content": spec.prompt}],
        "temperature": spec.temperature,
        "max_tokens": spec.max_tokens,
        "stream": stream,
    }

    if provider in GUIDED_DECODING_PROVIDERS:
        if spec.guided_choice:
            payload["guided_choice"] = list(spec.guided_choice)
        if spec.guided_regex:
            payload["guided_regex"] = spec.guided_regex
        if spec.guided_json:
            payload["guided_json"] = dict(spec.guided_json)
        payload["chat_template_kwargs"] = {"enable_thinking": bool(spec.enable_thinking)}
        return payload

    if spec.guided_json:
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {"name": "response", "schema": dict(spec.guided_json)},
        }
    if spec.guided_choice or spec.guided_regex:
        logger.debug("Provider %s ignores guided choice/regex constraints", provider)
    if spec.enable_thinking and provider == "google":
        payload["reasoning_effort"] = "medium"
    return payload


def error_message(body: Any, fallback: str) -> str:
    """Pull a human-readable message out of a provider error body."""

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
        if body.get("detail"):
            return str(body["detail"])
    if isinstance(body, list) and body:
        return error_message(body[0], fallback)
    return fallback


def parse_chat_completion(body: Any) -> ProviderResponse:
    try:
        message = body["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError(f"Malformed chat completion response: {exc!r}") from exc
    content = message.get("content") or ""
    reasoning = message.get("reasoning_content") or message.get("reasoning")
    return ProviderResponse(content=content, reasoning_content=reasoning or None)


def parse_stream_line(line: str) -> tuple[Optional[str], Optional[str], bool]:
    """Return ``(content, reasoning, done)`` for one server-sent line."""

    line = line.strip()
    if not line.startswith("data:"):
        return None, None, False
    data = line[len("data:"):].strip()
    if data == STREAM_DONE:
        return None, None, True
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable stream chunk: %s", data[:200])
        return None, None, False
    if isinstance(chunk, dict) and chunk.get("error"):
        raise ProviderError(error_message(chunk, "Provider reported a streaming error"))
    try:
        delta = chunk["choices"][0].get("delta") or {}
    except (KeyError, IndexError, TypeError, AttributeError):
        return None, None, False
    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
    return delta.get("content") or None, reasoning or None, False


__all__ = [
    "BEDROCK_PROVIDERS",
    "POLLY_PROVIDERS",
    "ProviderEndpoint",
    "STREAM_DONE",
    "build_chat_payload",
    "error_message",
    "normalise_provider",
    "parse_chat_completion",
    "parse_stream_line",
    "resolve_endpoint",
]
