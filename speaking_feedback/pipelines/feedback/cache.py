"""Lookup of previously generated step content."""

from __future__ import annotations

import logging
from typing import Optional

from speaking_feedback.application.interfaces import FeedbackRepositoryInterface

from .types import SubjectRef

logger = logging.getLogger("speaking_feedback.pipeline")


class ExistingContentCache:
    """Answer "has (subject, criteria, field) already been computed?".

    Reads only: the newest (or oldest) record with a non-empty ``field`` wins,
    however many records of other fields were written after it.
    """

    def __init__(
        self,
        repository: FeedbackRepositoryInterface,
        *,
        order: str = "desc",
    ) -> None:
        self._repository = repository
        self._order = order

    async def get_existing(
        self,
        subject: SubjectRef,
        criteria: str,
        field: str,
    ) -> Optional[str]:
        records = await self._repository.get_feedback_records(
            subject,
            criteria,
            order=self._order,
            limit=1,
            with_content=field,
        )
        for record in records:
            value = record.content(field)
            if value:
                logger.debug(
                    "Reusing %s for %s criteria=%s (record %s)",
                    field,
                    subject,
                    criteria,
                    record.id,
                )
                return value
        return None


__all__ = ["ExistingContentCache"]
