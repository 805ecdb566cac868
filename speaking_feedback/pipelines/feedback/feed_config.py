"""Parse stored feed definitions into typed step configuration.

Feeds are stored with their steps as nested ``sections``, each section holding
``{"id": ..., "value": ...}`` fields. Everything the pipeline understands is
lifted into :class:`StepConfig`; anything else is kept in ``extra``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, Optional

from .types import FeedConfig, StepConfig, SubjectKind

logger = logging.getLogger(__name__)

GENERAL_SECTION = "general-setting"
ADVANCED_SECTION = "advanced-setting"

# Prompt field id -> language code.
PROMPT_FIELDS = {
    "englishPrompt": "en",
    "vietnamesePrompt": "vi",
}

_KNOWN_FIELDS = {
    GENERAL_SECTION: {"apiProvider", "model", "prompt", "enable_thinking", *PROMPT_FIELDS},
    ADVANCED_SECTION: {
        "temperature",
        "maxToken",
        "guided_choice",
        "guided_regex",
        "guided_json",
        "scoreRegex",
    },
}


def _flatten_sections(sections: Iterable[Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
    config: dict[str, dict[str, Any]] = {}
    for section in sections or ():
        key = section.get("section")
        if not key or "fields" not in section:
            continue
        values = config.setdefault(key, {})
        for item in section.get("fields") or ():
            if "id" in item and "value" in item:
                values[item["id"]] = item["value"]
    return config


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid numeric step setting %r; using %s", value, default)
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.warning("Invalid integer step setting %r; using %s", value, default)
        return default


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def parse_guided_choice(value: Any) -> Optional[tuple[str, ...]]:
    """Accept a JSON list, a Python list, or newline/comma separated choices."""

    if _blank(value):
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                value = text.strip("[]").split(",")
        else:
            separator = "\n" if "\n" in text else ","
            value = text.split(separator)
    choices = tuple(str(choice).strip() for choice in value if str(choice).strip())
    return choices or None


def parse_guided_json(value: Any) -> Optional[Mapping[str, Any]]:
    if _blank(value):
        return None
    if isinstance(value, Mapping):
        return dict(value)
    try:
        parsed = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Ignoring guided_json that is not valid JSON")
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_step(raw_step: Mapping[str, Any]) -> StepConfig:
    """Build a :class:`StepConfig` from one stored step."""

    name = raw_step.get("step") or "feedback"
    config = _flatten_sections(raw_step.get("sections") or ())
    general = config.get(GENERAL_SECTION, {})
    advanced = config.get(ADVANCED_SECTION, {})
    defaults = StepConfig(name=name)

    prompts = {
        language: str(general[field_id])
        for field_id, language in PROMPT_FIELDS.items()
        if not _blank(general.get(field_id))
    }

    guided_json_by_language: dict[str, Mapping[str, Any]] = {}
    for key, value in advanced.items():
        if key.startswith("guided_json_"):
            parsed = parse_guided_json(value)
            if parsed is not None:
                guided_json_by_language[key[len("guided_json_"):]] = parsed

    extra: dict[str, Any] = {}
    for section_key, values in config.items():
        known = _KNOWN_FIELDS.get(section_key, set())
        for field_id, value in values.items():
            if field_id in known or field_id.startswith("guided_json_"):
                continue
            extra[f"{section_key}.{field_id}"] = value

    score_regex = advanced.get("scoreRegex")

    return StepConfig(
        name=name,
        provider=general.get("apiProvider") or defaults.provider,
        model=general.get("model") or defaults.model,
        temperature=_as_float(advanced.get("temperature", defaults.temperature), defaults.temperature),
        max_tokens=_as_int(advanced.get("maxToken", defaults.max_tokens), defaults.max_tokens),
        prompts=prompts,
        transcription_prompt=str(general.get("prompt") or ""),
        enable_thinking=_as_bool(general.get("enable_thinking", False)),
        guided_choice=parse_guided_choice(advanced.get("guided_choice")),
        guided_regex=None if _blank(advanced.get("guided_regex")) else str(advanced["guided_regex"]),
        guided_json=parse_guided_json(advanced.get("guided_json")),
        guided_json_by_language=guided_json_by_language,
        score_regex=str(score_regex) if not _blank(score_regex) else defaults.score_regex,
        extra=extra,
    )


def parse_feed(
    *,
    feed_id: int,
    title: str | None,
    description: str | None,
    apply_to: str | None,
    feedback_criteria: str | None,
    meta: Any,
    process_order: int | None = 0,
) -> FeedConfig:
    """Build a :class:`FeedConfig` from a stored feed row."""

    if isinstance(meta, str):
        meta = json.loads(meta) if meta else {}
    raw_steps = (meta or {}).get("steps") or []

    try:
        scope = SubjectKind(apply_to or SubjectKind.SPEECH.value)
    except ValueError:
        logger.warning("Feed %s applies to unsupported scope %r", feed_id, apply_to)
        scope = SubjectKind.SPEECH

    return FeedConfig(
        id=feed_id,
        title=title or "",
        description=description or "",
        apply_to=scope,
        feedback_criteria=feedback_criteria or "general",
        steps=tuple(parse_step(step) for step in raw_steps),
        process_order=process_order or 0,
    )


__all__ = ["parse_feed", "parse_guided_choice", "parse_guided_json", "parse_step"]
