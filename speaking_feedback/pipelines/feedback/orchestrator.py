"""Feed-level state machine: start, run each step in order, complete or fail."""

from __future__ import annotations

import logging
from typing import List

from speaking_feedback.domain.errors import FeedNotFoundError
from speaking_feedback.telemetry import record_feed_run

from .context import PipelineContext
from .executor import StepExecutor, ensure_subject
from .types import FeedConfig, FeedRequest

logger = logging.getLogger("speaking_feedback.pipeline")


class FeedOrchestrator:
    """Process one feed for one subject, reporting through the context emitter."""

    def __init__(self, context: PipelineContext) -> None:
        self._context = context
        self._executor = StepExecutor(context)

    async def process_feed_by_id(self, feed_id: int, request: FeedRequest) -> List[str]:
        feed = await self._context.repository.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)
        return await self.process_feed(feed, request)

    async def process_feed(self, feed: FeedConfig, request: FeedRequest) -> List[str]:
        """Run the feed's steps strictly in order and return their outputs.

        Any step failure emits ``feed_error`` and is re-raised; later steps do
        not run. An unknown subject, or one the feed does not apply to, is
        rejected before ``feed_start``.
        """

        await ensure_subject(self._context.repository, request.subject, feed.apply_to)

        emitter = self._context.emitter
        emitter.data(
            "feed_start",
            {
                "feed_id": feed.id,
                "feed_title": feed.title or "Speaking Feedback",
                "message": "Starting speaking feedback processing...",
                "feedback_criteria": feed.feedback_criteria,
            },
        )

        steps = feed.steps
        if request.refetch and request.refetch != "all":
            steps = tuple(step for step in steps if step.name == request.refetch)

        results: List[str] = []
        try:
            for step in steps:
                logger.info("Feed %s running step %s for %s", feed.id, step.name, request.subject)
                result = await self._executor.execute(
                    step,
                    criteria=feed.feedback_criteria,
                    request=request,
                )
                results.append(result)
        except Exception as exc:
            emitter.error(
                "feed_error",
                {
                    "feed_id": feed.id,
                    "title": "Error Processing Feedback",
                    "message": str(exc),
                    "ctaTitle": "Try Again",
                    "ctaLink": "#",
                },
            )
            record_feed_run("failed")
            logger.exception("Feed %s failed for %s", feed.id, request.subject)
            raise

        emitter.data(
            "feed_complete",
            {"feed_id": feed.id, "status": "success", "feedback": results},
        )
        record_feed_run("success")
        return results


__all__ = ["FeedOrchestrator"]
