"""Content modifiers applied to merge-tag values (``table:field:modifier``)."""

from __future__ import annotations

import html
import json
import re
from typing import Any

FLATTEN_SEPARATOR = "\n\n---\n\n"

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")
_WORD_START = re.compile(r"(^|\s)(\S)")
_REMOVE_ITEMS = re.compile(r"^remove_items_where_\{(.+?)\}_\{(.+?)\}_\{(.+?)\}$")


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _pretty(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=4)


def split_sentences(text: str) -> list[str]:
    if not text:
        return []
    return [part.strip() for part in _SENTENCE_SPLIT.split(text.strip()) if part.strip()]


def split_paragraphs(text: str) -> list[str]:
    """Non-empty lines, labelled ``Paragraph N: ...``."""

    if not text:
        return []
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    paragraphs = [line.strip() for line in lines if line.strip() != ""]
    return [f"Paragraph {index}: {paragraph}" for index, paragraph in enumerate(paragraphs, 1)]


def find_property(data: Any, name: str) -> Any:
    """First value stored under ``name`` anywhere in ``data`` (depth first)."""

    if isinstance(data, dict):
        if data.get(name) is not None:
            return data[name]
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None
    for child in children:
        if isinstance(child, (dict, list)):
            found = find_property(child, name)
            if found is not None:
                return found
    return None


def find_all_properties(data: Any, name: str) -> list[Any]:
    results: list[Any] = []
    if isinstance(data, dict):
        if data.get(name) is not None:
            results.append(data[name])
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return results
    for child in children:
        if isinstance(child, (dict, list)):
            results.extend(find_all_properties(child, name))
    return results


def remove_property(data: Any, name: str) -> Any:
    if isinstance(data, dict):
        return {key: remove_property(value, name) for key, value in data.items() if key != name}
    if isinstance(data, list):
        return [remove_property(item, name) for item in data]
    return data


def matches_condition(item_value: Any, operator: str, compare_value: str) -> bool:
    item_text = item_value if isinstance(item_value, str) else _scalar_text(item_value)
    if operator == "equals":
        return item_text == compare_value
    if operator == "not_equals":
        return item_text != compare_value
    if operator == "contains":
        return compare_value in item_text
    if operator == "not_contains":
        return compare_value not in item_text
    return False


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else ""
    if value is None:
        return ""
    return str(value)


def remove_items_where(data: Any, prop: str, operator: str, value: str) -> Any:
    """Drop list items whose ``prop`` matches the condition, at any depth."""

    if isinstance(data, list):
        kept = []
        for item in data:
            if isinstance(item, dict):
                processed = remove_items_where(item, prop, operator, value)
                if prop in item and matches_condition(item[prop], operator, value):
                    continue
                kept.append(processed)
            elif isinstance(item, list):
                kept.append(remove_items_where(item, prop, operator, value))
            else:
                kept.append(item)
        return kept
    if isinstance(data, dict):
        return {key: remove_items_where(item, prop, operator, value) for key, item in data.items()}
    return data


def _capitalize_words(text: str) -> str:
    return _WORD_START.sub(lambda m: m.group(1) + m.group(2).upper(), text)


def _flatten(content: list[Any]) -> str:
    return FLATTEN_SEPARATOR.join(
        _encode(item) if isinstance(item, (dict, list)) else str(item) for item in content
    )


def _load_json(content: Any) -> tuple[bool, Any]:
    try:
        return True, json.loads(content)
    except (TypeError, ValueError):
        return False, None


def _apply_single(content: Any, modifier: str) -> Any:
    text = content if isinstance(content, str) else _scalar_text(content)

    if modifier == "uppercase":
        return text.upper()
    if modifier == "lowercase":
        return text.lower()
    if modifier == "capitalize":
        return _capitalize_words(text)
    if modifier == "trim":
        return text.strip()
    if modifier == "html_entity_decode":
        return html.unescape(text)
    if modifier == "sentence":
        return split_sentences(text) or ["No content available."]
    if modifier == "paragraph":
        return split_paragraphs(text) or ["No content available."]
    if modifier == "paragraph_count":
        return len(split_paragraphs(text))

    if modifier.startswith("json_all_"):
        name = modifier[len("json_all_"):]
        ok, data = _load_json(text)
        if not ok:
            return ["Invalid JSON."]
        values = find_all_properties(data, name)
        if not values:
            return [f"No {name} found."]
        flattened: list[Any] = []
        for value in values:
            if isinstance(value, list):
                flattened.extend(value)
            elif isinstance(value, dict):
                flattened.extend(value.values())
            else:
                flattened.append(value)
        return flattened

    if modifier.startswith("json_"):
        name = modifier[len("json_"):]
        ok, data = _load_json(text)
        if not ok:
            return ["Invalid JSON."]
        value = find_property(data, name)
        if value is None:
            return [f"Schema mismatch: {name} property not found."]
        if isinstance(value, (list, dict)):
            if not value:
                return [f"No {name} found."]
            return list(value.values()) if isinstance(value, dict) else value
        return value

    if modifier.startswith("remove_property_"):
        ok, data = _load_json(text)
        if not ok:
            return ["Invalid JSON."]
        return _pretty(remove_property(data, modifier[len("remove_property_"):]))

    match = _REMOVE_ITEMS.match(modifier)
    if match:
        ok, data = _load_json(text)
        if not ok:
            return ["Invalid JSON."]
        prop, operator, value = match.groups()
        return _pretty(remove_items_where(data, prop, operator, value))

    return content


def split_modifiers(modifier: str) -> list[str]:
    """Split a compound modifier on ``:`` outside of ``{...}`` groups."""

    parts: list[str] = []
    depth = 0
    current = ""
    for char in modifier:
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(depth - 1, 0)
        if char == ":" and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += char
    parts.append(current)
    return [part.strip() for part in parts if part.strip()]


def apply_modifier(content: Any, modifier: str) -> Any:
    """Apply a (possibly compound) modifier.

    Lists are modified item by item and list results are spliced in, except
    ``flatten`` which joins the list into one string.
    """

    modifiers = split_modifiers(modifier)
    if len(modifiers) > 1:
        for single in modifiers:
            content = apply_modifier(content, single)
        return content
    if not modifiers:
        return content
    modifier = modifiers[0]

    if modifier == "flatten":
        return _flatten(content) if isinstance(content, list) else content

    if isinstance(content, list):
        result: list[Any] = []
        for item in content:
            modified = apply_modifier(item, modifier)
            if isinstance(modified, list):
                result.extend(modified)
            else:
                result.append(modified)
        return result

    return _apply_single(content, modifier)


__all__ = [
    "FLATTEN_SEPARATOR",
    "apply_modifier",
    "find_all_properties",
    "find_property",
    "remove_items_where",
    "remove_property",
    "split_modifiers",
    "split_paragraphs",
    "split_sentences",
]
