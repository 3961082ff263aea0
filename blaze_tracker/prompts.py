"""Prompt templates: Handlebars rendering and response parsing.

A PromptTemplate pairs the text sent to the generator with the rules for
turning the raw reply back into a typed result. parse_response() returns
None whenever the reply cannot be repaired into a valid response model.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any, Literal

import pybars
from pydantic import BaseModel, ConfigDict, ValidationError

from blaze_tracker.settings import CustomPrompt

logger = logging.getLogger(__name__)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

JsonShape = Literal["object", "array", "auto"]


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Handlebars helpers ───────────────────────────────────
# For user custom prompts. characters_present is passed as a list next to
# the preformatted "present" string.


def _helper_join(this, items, separator=", "):
    """{{join characters_present ", "}}"""
    return separator.join(str(i) for i in items or [])


_HELPERS: dict[str, Callable] = {
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── JSON repair ──────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([a-zA-Z_][a-zA-Z0-9_]*)(\s*:)")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def _extract_shape(text: str, shape: JsonShape) -> str:
    obj = _OBJECT_RE.search(text)
    arr = _ARRAY_RE.search(text)
    if shape == "object":
        return obj.group(0) if obj else text
    if shape == "array":
        return arr.group(0) if arr else text
    if obj and arr:
        return obj.group(0) if text.index("{") < text.index("[") else arr.group(0)
    if obj:
        return obj.group(0)
    if arr:
        return arr.group(0)
    return text


def _repair(text: str) -> str:
    text = _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', text)
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def parse_json_response(text: str, shape: JsonShape = "auto") -> Any:
    """Parse JSON from LLM output.

    Strips markdown fences, cuts out the object/array, and retries once with
    unquoted keys and trailing commas repaired. Raises ValueError otherwise.
    """
    cleaned = text.strip()
    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    cleaned = _extract_shape(cleaned, shape)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    repaired = _repair(cleaned)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        raise ValueError(f"Response is not valid JSON: {e}") from e


def extract_reasoning(parsed: Any) -> str | None:
    """Return the `reasoning` string of a parsed response, if it has one."""
    if isinstance(parsed, BaseModel):
        reasoning = getattr(parsed, "reasoning", None)
    elif isinstance(parsed, dict):
        reasoning = parsed.get("reasoning")
    else:
        return None
    return reasoning if isinstance(reasoning, str) else None


# ── Templates ────────────────────────────────────────────


class BuiltPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    system: str
    user: str


class PromptTemplate(BaseModel):
    """A named prompt plus the model its JSON reply must validate into."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str = ""
    system_prompt: str
    user_template: str
    default_temperature: float = 0.5
    response_model: type[BaseModel]
    shape: JsonShape = "object"

    def parse_response(self, text: str) -> BaseModel | None:
        try:
            data = parse_json_response(text, self.shape)
        except ValueError as e:
            logger.debug("%s: %s", self.name, e)
            return None
        if self.shape == "array" and isinstance(data, list):
            data = {"items": data}
        try:
            return self.response_model.model_validate(data)
        except ValidationError as e:
            logger.debug("%s: response failed validation: %s", self.name, e.error_count())
            return None


def build_prompt(
    template: PromptTemplate,
    values: dict[str, Any],
    custom_prompts: dict[str, CustomPrompt] | None = None,
) -> BuiltPrompt:
    """Render a template's system and user text.

    A custom prompt stored under the template's name replaces the system
    text and/or the user template; both are rendered with the same values.
    """
    system_src = template.system_prompt
    user_src = template.user_template
    custom = (custom_prompts or {}).get(template.name)
    if custom is not None:
        system_src = custom.system_prompt or system_src
        user_src = custom.user_template or user_src
    return BuiltPrompt(
        system=render_prompt(system_src, values),
        user=render_prompt(user_src, values),
    )
