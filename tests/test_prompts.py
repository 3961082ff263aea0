"""Tests for Handlebars prompt rendering, JSON repair, and template parsing."""

import pytest
from pydantic import BaseModel, Field

from blaze_tracker.prompts import (
    PromptError,
    PromptTemplate,
    build_prompt,
    extract_reasoning,
    parse_json_response,
    render_prompt,
)
from blaze_tracker.settings import CustomPrompt


class _Change(BaseModel):
    reasoning: str = ""
    changed: bool


class _Items(BaseModel):
    items: list[str] = Field(default_factory=list)


TEMPLATE = PromptTemplate(
    name="demo",
    system_prompt="Track {{character_name}}.",
    user_template="Messages:\n{{{messages}}}",
    response_model=_Change,
)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_triple_stash_does_not_escape():
    assert render_prompt("{{{text}}}", {"text": "<b> & \"q\""}) == "<b> & \"q\""


def test_render_each_loop():
    tpl = "{{#each items}}{{this}} {{/each}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c"]}) == "a b c "


def test_render_missing_variable():
    assert render_prompt("Hello {{name}}!", {}) == "Hello !"


def test_join_helper():
    assert render_prompt('{{join names ", "}}', {"names": ["Luna", "Alex"]}) == "Luna, Alex"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── parse_json_response ──────────────────────────────────────


class TestParseJson:
    def test_plain_object(self) -> None:
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self) -> None:
        text = 'Sure!\n```json\n{"a": 1}\n```\nDone.'
        assert parse_json_response(text, "object") == {"a": 1}

    def test_prose_around_object(self) -> None:
        assert parse_json_response('Here: {"a": [1, 2]} thanks', "object") == {"a": [1, 2]}

    def test_array_shape(self) -> None:
        assert parse_json_response('List: ["x", "y"]', "array") == ["x", "y"]

    def test_auto_picks_first_container(self) -> None:
        assert parse_json_response('[1, {"a": 2}]') == [1, {"a": 2}]

    def test_unquoted_keys_and_trailing_commas(self) -> None:
        assert parse_json_response('{a: 1, b: [2, 3,],}', "object") == {"a": 1, "b": [2, 3]}

    def test_garbage_raises_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_json_response("no json here", "object")


def test_extract_reasoning():
    assert extract_reasoning({"reasoning": "because"}) == "because"
    assert extract_reasoning(_Change(reasoning="why", changed=True)) == "why"
    assert extract_reasoning({"reasoning": 3}) is None
    assert extract_reasoning([1, 2]) is None


# ── PromptTemplate ───────────────────────────────────────────


class TestPromptTemplate:
    def test_parse_response_validates(self) -> None:
        parsed = TEMPLATE.parse_response('{"reasoning": "r", "changed": true}')
        assert isinstance(parsed, _Change)
        assert parsed.changed is True

    def test_parse_response_invalid_json_is_none(self) -> None:
        assert TEMPLATE.parse_response("I could not decide") is None

    def test_parse_response_failed_validation_is_none(self) -> None:
        assert TEMPLATE.parse_response('{"reasoning": "missing changed"}') is None

    def test_array_shape_wraps_items(self) -> None:
        template = PromptTemplate(
            name="list", system_prompt="", user_template="", response_model=_Items, shape="array",
        )
        parsed = template.parse_response('["a", "b"]')
        assert parsed.items == ["a", "b"]


class TestBuildPrompt:
    def test_renders_both_parts(self) -> None:
        built = build_prompt(TEMPLATE, {"character_name": "Luna", "messages": "[0] Alex: hi"})
        assert built.system == "Track Luna."
        assert built.user == "Messages:\n[0] Alex: hi"

    def test_custom_user_template_replaces_only_user(self) -> None:
        custom = {"demo": CustomPrompt(user_template="Just {{character_name}}")}
        built = build_prompt(TEMPLATE, {"character_name": "Luna"}, custom)
        assert built.system == "Track Luna."
        assert built.user == "Just Luna"

    def test_custom_temperature_only_keeps_text(self) -> None:
        custom = {"demo": CustomPrompt(temperature=0.9)}
        built = build_prompt(TEMPLATE, {"character_name": "Luna", "messages": ""}, custom)
        assert built.system == "Track Luna."

    def test_other_prompt_overrides_ignored(self) -> None:
        custom = {"other": CustomPrompt(system_prompt="nope")}
        built = build_prompt(TEMPLATE, {"character_name": "Luna", "messages": ""}, custom)
        assert built.system == "Track Luna."

    def test_custom_template_can_join_present_characters(self) -> None:
        custom = {"demo": CustomPrompt(user_template='Here: {{join characters_present "; "}}')}
        values = {"character_name": "Luna", "characters_present": ["Luna", "Alex"]}
        built = build_prompt(TEMPLATE, values, custom)
        assert built.user == "Here: Luna; Alex"
