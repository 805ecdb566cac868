"""Score extraction for scoring steps."""

from __future__ import annotations

import logging
import re
from typing import Optional

logger = logging.getLogger("speaking_feedback.pipeline")

DEFAULT_SCORE_REGEX = r"/\d+/"

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "u": 0,
}
_DELIMITED = re.compile(r"^([^\w\s\\])(?P<body>.*)\1(?P<flags>[a-zA-Z]*)$", re.DOTALL)


def compile_score_pattern(pattern: Optional[str]) -> re.Pattern[str]:
    """Compile a score regex, accepting ``/.../flags`` delimited notation.

    Invalid patterns fall back to the default ``\\d+``.
    """

    raw = (pattern or DEFAULT_SCORE_REGEX).strip()
    body, flags = raw, 0
    match = _DELIMITED.match(raw)
    if match:
        body = match.group("body")
        for flag in match.group("flags"):
            flags |= _FLAG_MAP.get(flag, 0)
    try:
        return re.compile(body, flags)
    except re.error as exc:
        logger.warning("Invalid score regex %r (%s); using default", pattern, exc)
        return re.compile(r"\d+")


def extract_score(content: str, pattern: Optional[str] = None) -> str:
    """Return the first match of ``pattern`` in ``content``, trimmed.

    When nothing matches the raw content is returned unchanged.
    """

    compiled = compile_score_pattern(pattern)
    match = compiled.search(content or "")
    if match is None:
        logger.debug("Score regex %s found no match; keeping raw content", compiled.pattern)
        return content
    return match.group(0).strip()


__all__ = ["DEFAULT_SCORE_REGEX", "compile_score_pattern", "extract_score"]
