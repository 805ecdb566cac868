"""Merge-tag content modifiers."""

import json

from speaking_feedback.pipelines.feedback.modifiers import (
    FLATTEN_SEPARATOR,
    apply_modifier,
    split_modifiers,
)


def test_text_case_modifiers():
    assert apply_modifier("hello world", "uppercase") == "HELLO WORLD"
    assert apply_modifier("HELLO", "lowercase") == "hello"
    assert apply_modifier("hello big world", "capitalize") == "Hello Big World"
    assert apply_modifier("  padded  ", "trim") == "padded"
    assert apply_modifier("Tom &amp; Jerry", "html_entity_decode") == "Tom & Jerry"


def test_sentence_and_paragraph_splitting():
    assert apply_modifier("I like tea. It is warm! Do you?", "sentence") == [
        "I like tea.",
        "It is warm!",
        "Do you?",
    ]
    assert apply_modifier("First line\n\nSecond line", "paragraph") == [
        "Paragraph 1: First line",
        "Paragraph 2: Second line",
    ]
    assert apply_modifier("one\ntwo\nthree", "paragraph_count") == 3
    assert apply_modifier("", "sentence") == ["No content available."]


def test_json_property_lookup():
    document = json.dumps({"result": {"errors": [{"word": "goed"}, {"word": "runned"}]}})

    assert apply_modifier(document, "json_errors") == [{"word": "goed"}, {"word": "runned"}]
    assert apply_modifier(document, "json_missing") == [
        "Schema mismatch: missing property not found."
    ]
    assert apply_modifier("not json", "json_errors") == ["Invalid JSON."]


def test_json_all_collects_every_occurrence():
    document = json.dumps({"a": {"tips": ["x"]}, "b": [{"tips": ["y", "z"]}]})

    assert apply_modifier(document, "json_all_tips") == ["x", "y", "z"]


def test_compound_modifier_flattens_list():
    document = json.dumps({"items": ["alpha", "beta"]})

    result = apply_modifier(document, "json_items:uppercase:flatten")

    assert result == f"ALPHA{FLATTEN_SEPARATOR}BETA"


def test_remove_property_and_items():
    document = json.dumps(
        {"errors": [{"type": "grammar", "note": "a"}, {"type": "lexis", "note": "b"}]}
    )

    without_notes = json.loads(apply_modifier(document, "remove_property_note"))
    assert without_notes == {"errors": [{"type": "grammar"}, {"type": "lexis"}]}

    filtered = json.loads(
        apply_modifier(document, "remove_items_where_{type}_{equals}_{grammar}")
    )
    assert filtered == {"errors": [{"type": "lexis", "note": "b"}]}


def test_split_modifiers_respects_braces():
    assert split_modifiers("json_errors:remove_items_where_{a:b}_{equals}_{x}:flatten") == [
        "json_errors",
        "remove_items_where_{a:b}_{equals}_{x}",
        "flatten",
    ]


def test_unknown_modifier_is_identity():
    assert apply_modifier("text", "sparkle") == "text"
