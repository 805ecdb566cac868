"""Feed-level sequencing, refetch filtering and failure reporting."""

from dataclasses import replace

import pytest

from speaking_feedback.domain.errors import (
    FeedNotFoundError,
    StepExecutionError,
    SubjectNotFoundError,
    SubjectScopeError,
)
from speaking_feedback.domain.models import AttemptInfo, AudioRef
from speaking_feedback.pipelines.feedback import (
    DataEvent,
    FeedConfig,
    FeedOrchestrator,
    FeedRequest,
    ProviderResponse,
    SubjectKind,
    SubjectRef,
)

from conftest import SPEECH_UUID, FakeProviderClient, event_names, make_step

SPEECH = SubjectRef.speech(SPEECH_UUID)


def _responder(spec):
    if spec.prompt.startswith("Think"):
        return ProviderResponse(content="The speaker hesitates often.")
    if spec.prompt.startswith("Score"):
        return ProviderResponse(content="the score is 6")
    return ProviderResponse(content="Work on reducing filler words.")


@pytest.fixture
def feed():
    return FeedConfig(
        id=5,
        title="Fluency and Coherence",
        feedback_criteria="fluency",
        steps=(
            make_step("chain-of-thought", "Think about: {|speech:transcript_text|}"),
            make_step("scoring", "Score using: {|speech_feedback:cot_content[feedback_criteria:fluency]|}"),
            make_step("feedback", "Feedback for band {|speech_feedback:score_content[feedback_criteria:fluency]|}"),
        ),
    )


async def test_steps_run_in_order_and_report_lifecycle(context, repository, emitter, feed):
    context.client = FakeProviderClient(_responder)

    results = await FeedOrchestrator(context).process_feed(feed, FeedRequest(subject=SPEECH))

    assert results == ["The speaker hesitates often.", "6", "Work on reducing filler words."]
    assert event_names(emitter.drain()) == [
        ("data", "feed_start"),
        ("data", "CHAIN_OF_THOUGHT"),
        ("done", "CHAIN_OF_THOUGHT"),
        ("data", "SCORING"),
        ("done", "SCORING"),
        ("data", "FEEDBACK"),
        ("done", "FEEDBACK"),
        ("data", "feed_complete"),
    ]
    assert len(context.client.calls) == 3
    assert context.client.calls[1].prompt == "Score using: The speaker hesitates often."
    assert context.client.calls[2].prompt == "Feedback for band 6"
    assert [
        (record.cot_content, record.score_content, record.feedback_content)
        for record in repository.records
    ] == [
        ("The speaker hesitates often.", None, None),
        (None, "6", None),
        (None, None, "Work on reducing filler words."),
    ]


async def test_start_and_complete_payloads(context, emitter, feed):
    context.client = FakeProviderClient(_responder)

    await FeedOrchestrator(context).process_feed(feed, FeedRequest(subject=SPEECH))

    events = emitter.drain()
    assert events[0] == DataEvent(
        "feed_start",
        {
            "feed_id": 5,
            "feed_title": "Fluency and Coherence",
            "message": "Starting speaking feedback processing...",
            "feedback_criteria": "fluency",
        },
    )
    assert events[-1] == DataEvent(
        "feed_complete",
        {
            "feed_id": 5,
            "status": "success",
            "feedback": ["The speaker hesitates often.", "6", "Work on reducing filler words."],
        },
    )


async def test_second_run_reuses_everything(context, emitter, feed):
    context.client = FakeProviderClient(_responder)
    orchestrator = FeedOrchestrator(context)

    await orchestrator.process_feed(feed, FeedRequest(subject=SPEECH))
    emitter.drain()
    results = await orchestrator.process_feed(feed, FeedRequest(subject=SPEECH))

    assert len(context.client.calls) == 3
    assert results == ["The speaker hesitates often.", "6", "Work on reducing filler words."]
    reused = [
        event.payload.get("reused")
        for event in emitter.drain()
        if isinstance(event, DataEvent) and event.event_type == "SCORING"
    ]
    assert reused == [True]


async def test_refetch_runs_only_the_named_step(context, repository, emitter, feed):
    repository.add_record(SPEECH, "fluency", cot_content="Old reasoning")
    repository.add_record(SPEECH, "fluency", score_content="5")
    repository.add_record(SPEECH, "fluency", feedback_content="Old feedback")
    context.client = FakeProviderClient(_responder)

    results = await FeedOrchestrator(context).process_feed(
        feed, FeedRequest(subject=SPEECH, refetch="scoring")
    )

    assert results == ["6"]
    assert len(context.client.calls) == 1
    assert context.client.calls[0].prompt == "Score using: Old reasoning"
    assert event_names(emitter.drain()) == [
        ("data", "feed_start"),
        ("data", "SCORING"),
        ("done", "SCORING"),
        ("data", "feed_complete"),
    ]


async def test_failure_stops_the_feed(context, repository, emitter, feed):
    context.client = FakeProviderClient(_responder, fail_when=lambda spec: spec.prompt.startswith("Score"))

    with pytest.raises(StepExecutionError):
        await FeedOrchestrator(context).process_feed(feed, FeedRequest(subject=SPEECH))

    events = emitter.drain()
    assert event_names(events) == [
        ("data", "feed_start"),
        ("data", "CHAIN_OF_THOUGHT"),
        ("done", "CHAIN_OF_THOUGHT"),
        ("error", "SCORING_ERROR"),
        ("error", "feed_error"),
    ]
    assert events[-1].payload["title"] == "Error Processing Feedback"
    assert events[-1].payload["message"] == "Upstream model unavailable"
    assert len(context.client.calls) == 2
    assert len(repository.records) == 1


async def test_unknown_feed_id(context):
    with pytest.raises(FeedNotFoundError):
        await FeedOrchestrator(context).process_feed_by_id(404, FeedRequest(subject=SPEECH))


async def test_feed_by_id(context, repository, feed):
    repository.feeds[feed.id] = feed
    context.client = FakeProviderClient(_responder)

    results = await FeedOrchestrator(context).process_feed_by_id(feed.id, FeedRequest(subject=SPEECH))

    assert results[1] == "6"


async def test_unknown_subject_fails_before_feed_start(context, repository, emitter, feed):
    missing = SubjectRef.speech("00000000-0000-0000-0000-000000000000")

    with pytest.raises(SubjectNotFoundError):
        await FeedOrchestrator(context).process_feed(feed, FeedRequest(subject=missing))

    assert emitter.drain() == []
    assert context.client.calls == []
    assert repository.records == []


async def test_attempt_is_rejected_by_speech_feed(context, repository, emitter, feed):
    with pytest.raises(SubjectScopeError):
        await FeedOrchestrator(context).process_feed(
            feed, FeedRequest(subject=SubjectRef.attempt(7))
        )

    assert emitter.drain() == []
    assert context.client.calls == []


async def test_attempt_feed_runs_for_attempt(context, repository, feed):
    repository.attempts[7] = AttemptInfo(
        id=7,
        speech_uuid=SPEECH_UUID,
        audio=AudioRef(id=70, file_path="/audio/attempt-7.webm", transcription={"text": "I like tea."}),
    )
    attempt_feed = replace(
        feed,
        apply_to=SubjectKind.ATTEMPT,
        steps=(make_step("feedback", "Advise on: {|attempt_transcript|}"),),
    )

    results = await FeedOrchestrator(context).process_feed(
        attempt_feed, FeedRequest(subject=SubjectRef.attempt(7))
    )

    assert results == ["reply: Advise on: I like tea."]
    assert repository.records[0].subject_key == "7"
