"""Exceptions raised across the feedback pipeline."""

from __future__ import annotations

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for feed processing failures."""

    status_code: int = 500


class ConfigurationError(PipelineError):
    """Missing feed, missing step content or an unknown subject."""

    status_code = 404


class FeedNotFoundError(ConfigurationError):
    def __init__(self, feed_id: int) -> None:
        super().__init__("Feed not found.")
        self.feed_id = feed_id


class SubjectNotFoundError(ConfigurationError):
    def __init__(self, subject: object) -> None:
        super().__init__(f"Subject not found: {subject}")
        self.subject = subject


class SubjectScopeError(ConfigurationError):
    """The feed applies to a different kind of subject than the one requested."""

    status_code = 400

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"This feed applies to a {expected}, not an {actual}.")
        self.expected = expected
        self.actual = actual


class StepConfigurationError(ConfigurationError):
    """A step cannot run with the data available for its subject."""


class StepExecutionError(PipelineError):
    """A step failed after its error event was emitted."""

    def __init__(self, step_name: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.step_name = step_name
        if status_code is not None:
            self.status_code = status_code


class PersistenceError(RuntimeError):
    """A write against the feedback store failed."""


class ProviderError(RuntimeError):
    """An AI backend call failed (transport, status or payload)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


__all__ = [
    "ConfigurationError",
    "FeedNotFoundError",
    "PersistenceError",
    "PipelineError",
    "ProviderError",
    "StepConfigurationError",
    "StepExecutionError",
    "SubjectNotFoundError",
    "SubjectScopeError",
]
