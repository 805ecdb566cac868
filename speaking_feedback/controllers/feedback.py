"""Speaking feedback endpoints.

``GET /speaking/feedback`` runs one feed for a speech or an attempt and
streams progress as server-sent events. See
``speaking_feedback.pipelines.feedback`` for the stage-by-stage flow.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from speaking_feedback.config.settings import settings
from speaking_feedback.controllers.dependencies import (
    CurrentUserIdDep,
    ProviderClientDep,
    RepositoryDep,
    RepositoryFactoryDep,
)
from speaking_feedback.domain.errors import FeedNotFoundError
from speaking_feedback.pipelines.feedback import (
    EventEmitter,
    FeedOrchestrator,
    FeedRequest,
    PipelineContext,
    SubjectRef,
    encode_sse,
    ensure_subject,
)
from speaking_feedback.views import ErrorResponse, FeedbackRecordResponse

router = APIRouter(prefix="/speaking", tags=["speaking"])

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get(
    "/feedback",
    response_class=StreamingResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def stream_feedback(
    open_repository: RepositoryFactoryDep,
    client: ProviderClientDep,
    user_id: CurrentUserIdDep,
    feed_id: int = Query(..., gt=0),
    uuid: Optional[str] = Query(None, alias="UUID"),
    attempt_id: Optional[int] = Query(None, gt=0),
    language: str = "en",
    feedback_style: str = "",
    guide_score: str = "",
    guide_feedback: str = "",
    target_score: str = "",
    refetch: str = "",
) -> StreamingResponse:
    """Process a feed and stream its events as ``text/event-stream``."""

    if uuid:
        subject = SubjectRef.speech(uuid)
    elif attempt_id:
        subject = SubjectRef.attempt(attempt_id)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either UUID or attempt_id is required.",
        )

    async with open_repository() as repository:
        feed = await repository.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)
        await ensure_subject(repository, subject, feed.apply_to)

    feed_request = FeedRequest(
        subject=subject,
        language=language,
        feedback_style=feedback_style,
        guide_score=guide_score,
        guide_feedback=guide_feedback,
        target_score=target_score,
        refetch=refetch,
        user_id=user_id,
    )
    emitter = EventEmitter()

    async def run_feed() -> None:
        try:
            async with open_repository() as repository:
                context = PipelineContext(
                    repository=repository,
                    client=client,
                    emitter=emitter,
                    user_id=user_id,
                    stream_responses=settings.pipeline.stream_responses,
                    default_language=settings.pipeline.default_language,
                    feedback_order=settings.pipeline.feedback_order,
                    feedback_limit=settings.pipeline.feedback_lookup_limit,
                )
                await FeedOrchestrator(context).process_feed(feed, feed_request)
            emitter.done()
        finally:
            emitter.close()

    async def event_stream() -> AsyncIterator[str]:
        task = asyncio.create_task(run_feed())
        try:
            async for event in emitter:
                yield encode_sse(event)
        finally:
            if not task.done():
                logger.info("Client left feed %s for %s; cancelling", feed_id, subject)
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("Feed %s for %s ended with error: %s", feed_id, subject, exc)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.put(
    "/feedback/records/{record_id}/preferred",
    response_model=FeedbackRecordResponse,
    response_model_by_alias=True,
    responses={404: {"model": ErrorResponse}},
)
async def mark_preferred(record_id: int, repository: RepositoryDep) -> FeedbackRecordResponse:
    """Flag one record as preferred for its subject and criterion."""

    entry = await repository.set_preferred_feedback(record_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feedback record not found.",
        )
    return FeedbackRecordResponse.model_validate(entry)
