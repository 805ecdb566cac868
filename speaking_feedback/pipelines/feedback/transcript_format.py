"""Transcript rendering helpers used by the merge-tag resolver.

The input is the ``verbose_json`` payload cached on an audio reference:
``{"text": ..., "duration": ..., "segments": [{"start", "end", "text", "words"}],
"words": [{"word", "start", "end"}]}``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

DEFAULT_PAUSE_THRESHOLD = 0.7
NO_PAUSES_NOTE = "[No significant pauses detected in this recording]"
NO_PAUSES_OR_HESITATIONS_NOTE = (
    "[No significant pauses or hesitations detected in this recording]"
)

_PUNCTUATION_END = re.compile(r"[.,:;!?]$")
_MID_SENTENCE_BREAK = re.compile(r"([^.!?\n])\n+([A-Z])")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class TimedWord:
    word: str
    start: float
    end: float


def clean_transcript_text(text: Optional[str]) -> str:
    """Rejoin mid-sentence line breaks and collapse whitespace."""

    if not text:
        return ""
    text = _MID_SENTENCE_BREAK.sub(lambda m: f"{m.group(1)} {m.group(2).lower()}", text)
    return _WHITESPACE.sub(" ", text.strip())


def _ends_with_punctuation(word: str) -> bool:
    return bool(_PUNCTUATION_END.search(word.strip()))


def _format_seconds(value: float) -> str:
    return f"{round(value, 1):g}"


def timed_words(transcription: Mapping[str, Any] | None) -> list[TimedWord]:
    """Collect word timings from segments first, then top-level words.

    A word overlapping an already collected word by more than half of its
    own duration is skipped.
    """

    if not transcription:
        return []

    collected: list[TimedWord] = []

    def overlaps(start: float, end: float) -> bool:
        threshold = (end - start) * 0.5
        for existing in collected:
            overlap = min(existing.end, end) - max(existing.start, start)
            if overlap > threshold:
                return True
        return False

    def add(words: Iterable[Mapping[str, Any]]) -> None:
        for raw in words or ():
            try:
                start, end = float(raw["start"]), float(raw["end"])
            except (KeyError, TypeError, ValueError):
                continue
            if not overlaps(start, end):
                collected.append(TimedWord(str(raw.get("word", "")).strip(), start, end))

    for segment in transcription.get("segments") or ():
        add(segment.get("words") or ())
    add(transcription.get("words") or ())

    return sorted(collected, key=lambda word: word.start)


def pause_threshold(transcription: Mapping[str, Any] | None) -> float:
    """Gap length (seconds) above which a silence counts as a pause."""

    words = timed_words(transcription)
    if len(words) < 2 or not transcription or not transcription.get("segments"):
        return DEFAULT_PAUSE_THRESHOLD

    segment_of: dict[float, int] = {}
    for index, segment in enumerate(transcription["segments"]):
        for raw in segment.get("words") or ():
            try:
                segment_of[float(raw["start"])] = index
            except (KeyError, TypeError, ValueError):
                continue

    within_segment = []
    for previous, current in zip(words, words[1:]):
        prev_segment = segment_of.get(previous.start)
        if prev_segment is not None and prev_segment == segment_of.get(current.start):
            gap = current.start - previous.end
            if gap > 0:
                within_segment.append(gap)

    if len(within_segment) < 3:
        gaps = [current.start - previous.end for previous, current in zip(words, words[1:])]
        gaps = [gap for gap in gaps if gap > 0]
        if not gaps:
            return DEFAULT_PAUSE_THRESHOLD
        return max(DEFAULT_PAUSE_THRESHOLD, (sum(gaps) / len(gaps)) * 2)

    mean = sum(within_segment) / len(within_segment)
    std_dev = math.sqrt(sum((gap - mean) ** 2 for gap in within_segment) / len(within_segment))
    return max(mean + 3 * std_dev, DEFAULT_PAUSE_THRESHOLD)


def format_with_pauses(transcription: Mapping[str, Any] | None) -> Optional[str]:
    """Insert ``[X.Xs PAUSE]`` markers at long gaps not following punctuation."""

    if not transcription:
        return None
    words = timed_words(transcription)
    if not words:
        return transcription.get("text")

    threshold = pause_threshold(transcription)
    parts: list[str] = []
    detected = False
    for current, following in zip(words, words[1:] + [None]):
        parts.append(current.word)
        if following is None:
            continue
        gap = following.start - current.end
        if gap > threshold and not _ends_with_punctuation(current.word):
            parts.append(f"[{_format_seconds(gap)}s PAUSE]")
            detected = True

    text = " ".join(parts)
    if not detected:
        text += "\n\n" + NO_PAUSES_NOTE
    return text


def format_with_chunking(transcription: Mapping[str, Any] | None) -> Optional[str]:
    """Mark long gaps as natural pauses (after punctuation) or hesitations."""

    if not transcription:
        return None
    words = timed_words(transcription)
    if not words:
        return transcription.get("text")

    threshold = pause_threshold(transcription)
    parts: list[str] = []
    detected = False
    for current, following in zip(words, words[1:] + [None]):
        parts.append(current.word)
        if following is None:
            continue
        gap = following.start - current.end
        if gap <= threshold:
            continue
        label = "NATURAL PAUSE" if _ends_with_punctuation(current.word) else "HESITATION"
        parts.append(f"[{_format_seconds(gap)}s {label}]")
        detected = True

    text = " ".join(parts)
    if not detected:
        text += "\n\n" + NO_PAUSES_OR_HESITATIONS_NOTE
    return text


def _count_words(text: str) -> int:
    return len([word for word in _WHITESPACE.split(text.strip()) if word])


def speaking_rate(transcriptions: Iterable[Mapping[str, Any] | None]) -> Optional[int]:
    """Words per minute across several transcriptions, or None without timing."""

    total_words = 0
    total_duration = 0.0

    for data in transcriptions:
        if not data:
            continue
        segments = data.get("segments") or []
        words = data.get("words") or []
        if segments:
            for segment in segments:
                total_duration += float(segment.get("end", 0)) - float(segment.get("start", 0))
                if segment.get("words"):
                    total_words += len(segment["words"])
                elif segment.get("text"):
                    total_words += _count_words(segment["text"])
        elif words:
            total_words += len(words)
            if len(words) > 1:
                total_duration += float(words[-1]["end"]) - float(words[0]["start"])
        elif data.get("text") and data.get("duration") is not None:
            total_words += _count_words(data["text"])
            total_duration += float(data["duration"])

    if total_duration <= 0 or total_words == 0:
        return None
    return int(round(total_words / (total_duration / 60)))


__all__ = [
    "NO_PAUSES_NOTE",
    "NO_PAUSES_OR_HESITATIONS_NOTE",
    "TimedWord",
    "clean_transcript_text",
    "format_with_chunking",
    "format_with_pauses",
    "pause_threshold",
    "speaking_rate",
    "timed_words",
]
