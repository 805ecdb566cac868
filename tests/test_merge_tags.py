"""Prompt template expansion against the feedback store."""

import pytest

from speaking_feedback.domain.models import AttemptInfo, AudioRef
from speaking_feedback.pipelines.feedback import (
    BatchPrompt,
    MergeTagResolver,
    SinglePrompt,
    SubjectRef,
)
from speaking_feedback.pipelines.feedback.merge_tags import (
    TagLookup,
    evaluate_score_condition,
    is_empty,
    render_target_score,
)

from conftest import SPEECH_UUID

SPEECH = SubjectRef.speech(SPEECH_UUID)


@pytest.fixture
def resolver(repository):
    return MergeTagResolver(repository)


async def test_template_without_tags_is_returned_unchanged(resolver):
    assert await resolver.resolve("Just talk.", SPEECH) == SinglePrompt("Just talk.")


async def test_request_values_substitute_with_prefix_and_suffix(resolver):
    prompt = await resolver.resolve(
        "Grade it.{ Use score |guide_score| as reference.}{ Style: |feedback_style|}",
        SPEECH,
        guide_score="7",
    )

    assert prompt == SinglePrompt("Grade it. Use score 7 as reference.")


async def test_transcript_text_joins_cleaned_parts(resolver):
    prompt = await resolver.resolve("Transcript: {|speech:transcript_text|}", SPEECH)

    assert prompt == SinglePrompt(
        "Transcript: I grew up in a small town. My favourite hobby is reading."
    )


async def test_list_valued_tag_produces_batch(resolver):
    prompt = await resolver.resolve("Part: {|speech:transcripts|} ({|guide_score|})", SPEECH, guide_score="6")

    assert prompt == BatchPrompt(
        (
            "Part: I grew up in a small town. (6)",
            "Part: My favourite hobby is reading. (6)",
        )
    )


async def test_unresolvable_tags_become_empty(resolver):
    prompt = await resolver.resolve("A{ x |unknown| y}B{ z |nosuch:field| w}C", SPEECH)

    assert prompt == SinglePrompt("ABC")


async def test_modifier_applies_to_lookup(resolver):
    prompt = await resolver.resolve("{|speech:transcript_text:uppercase|}", SPEECH)

    assert prompt == SinglePrompt("I GREW UP IN A SMALL TOWN. MY FAVOURITE HOBBY IS READING.")


async def test_speech_feedback_filtered_by_criteria(repository, resolver):
    repository.add_record(SPEECH, "fluency", score_content="5")
    repository.add_record(SPEECH, "grammar", score_content="8")
    repository.add_record(SPEECH, "fluency", score_content="6")

    prompt = await resolver.resolve(
        "Fluency {|speech_feedback:score_content[feedback_criteria:fluency]|}, "
        "grammar {|speech_feedback:score_content[feedback_criteria:grammar]|}",
        SPEECH,
    )

    assert prompt == SinglePrompt("Fluency 6, grammar 8")


async def test_zero_like_values_are_empty(repository, resolver):
    repository.add_record(SPEECH, "fluency", score_content="0")

    prompt = await resolver.resolve(
        "[{score |speech_feedback:score_content[feedback_criteria:fluency]|}]", SPEECH
    )

    assert prompt == SinglePrompt("[]")


async def test_target_score_condition(resolver):
    template = "Plan.{ |target_score:if[>=7]then[Aim for advanced vocabulary.]|}"

    assert await resolver.resolve(template, SPEECH, target_score="7.5") == SinglePrompt(
        "Plan. Aim for advanced vocabulary."
    )
    assert await resolver.resolve(template, SPEECH, target_score="6") == SinglePrompt("Plan.")
    assert await resolver.resolve("Goal {|target_score|}", SPEECH, target_score="8") == SinglePrompt(
        "Goal 8"
    )


async def test_attempt_shorthands(repository, resolver):
    repository.attempts[11] = AttemptInfo(
        id=11,
        speech_uuid=SPEECH_UUID,
        question_content="Describe your hometown.",
        audio=AudioRef(
            id=9,
            file_path="/audio/attempt-11.webm",
            title="Part 2",
            transcription={"text": "My hometown is\nQuiet and green."},
        ),
    )

    prompt = await resolver.resolve(
        "{Q: |attempt_question|}\n{T: |attempt_title|}\n{A: |attempt_transcript|}",
        SubjectRef.attempt(11),
    )

    assert prompt == SinglePrompt(
        "Q: Describe your hometown.\nT: Part 2\nA: My hometown is quiet and green."
    )


async def test_attempt_feedback_for_speech_lists_per_attempt(repository, resolver):
    for attempt_id in (21, 22):
        repository.attempts[attempt_id] = AttemptInfo(id=attempt_id, speech_uuid=SPEECH_UUID)
    repository.add_record(SubjectRef.attempt(22), "general", feedback_content="Second answer notes")
    repository.add_record(SubjectRef.attempt(21), "general", feedback_content="First answer notes")

    prompt = await resolver.resolve("{|speech_attempt_feedback:feedback_content|}", SPEECH)

    assert prompt == BatchPrompt(("First answer notes", "Second answer notes"))


async def test_missing_subject_resolves_empty(resolver):
    prompt = await resolver.resolve(
        "T:{|speech:transcript_text|}", SubjectRef.speech("00000000-0000-0000-0000-000000000000")
    )

    assert prompt == SinglePrompt("T:")


def test_tag_lookup_parsing():
    lookup = TagLookup.parse("speech_feedback:feedback_content[feedback_criteria:fluency]:json_tips:flatten")

    assert lookup == TagLookup(
        table="speech_feedback",
        field="feedback_content",
        filter_field="feedback_criteria",
        filter_value="fluency",
        modifier="json_tips:flatten",
    )
    assert TagLookup.parse("attempt_question") == TagLookup("attempt", "question_content")


def test_emptiness_and_conditions():
    assert is_empty("0") and is_empty("") and is_empty(0) and is_empty([])
    assert not is_empty("6")
    assert evaluate_score_condition("6.5", "<7")
    assert evaluate_score_condition("7", "7")
    assert not evaluate_score_condition("abc", ">=1")
    assert render_target_score("target_score:if[!=6]then[Keep going]", "6") == ""
