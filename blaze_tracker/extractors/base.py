"""Extractor framework.

An extractor is one LLM-backed unit of work that turns a window of recent
chat into zero or more events. Three shapes exist:

  GlobalExtractor        run(turn)                   — once per turn
  PerCharacterExtractor  run(turn, character)        — once per present character
                         run_batch(turn, characters) — optional, one call for all
  PerPairExtractor       run(turn, pair)             — once per sorted pair

Extractors never touch the store: they read projections and return events.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from blaze_tracker.events import EventBase
from blaze_tracker.llm import Generator
from blaze_tracker.models import ExtractionContext, MessageAndSwipe, NarrativeState, SwipeContext
from blaze_tracker.parse import ExtractionRuntime, ParseResult, generate_and_parse
from blaze_tracker.prompts import PromptTemplate, build_prompt
from blaze_tracker.settings import ExtractionSettings
from blaze_tracker.store import EventStore, project_with_turn_events
from blaze_tracker.strategies import (
    EveryMessage,
    FixedNumber,
    MessageStrategy,
    RunStrategy,
    RunStrategyContext,
    evaluate_run_strategy,
    message_window,
)

logger = logging.getLogger(__name__)


class BatchExtractionError(RuntimeError):
    """The single batch call failed; callers fall back to per-target calls."""


@dataclass
class TurnContext:
    """Everything an extractor may read while the turn is in progress."""

    generator: Generator
    context: ExtractionContext
    settings: ExtractionSettings
    store: EventStore
    source: MessageAndSwipe
    swipe_context: SwipeContext
    turn_events: list[EventBase]
    runtime: ExtractionRuntime
    abort: asyncio.Event | None = None

    @property
    def current_message(self) -> int:
        return self.source.message_id

    @property
    def aborted(self) -> bool:
        return self.abort is not None and self.abort.is_set()

    def projection(self) -> NarrativeState:
        """Committed state at this message plus this turn's events so far."""
        return project_with_turn_events(
            self.store, self.turn_events, self.current_message, self.swipe_context,
        )

    def committed_projection(self) -> NarrativeState:
        return self.store.project_state_at_message(self.current_message, self.swipe_context)

    def frozen(self) -> TurnContext:
        """Copy whose turn_events no longer follows the live list."""
        return dataclasses.replace(self, turn_events=list(self.turn_events))


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_messages(context: ExtractionContext, start: int, end: int) -> str:
    lines = []
    for index in range(max(0, start), min(end, len(context.chat) - 1) + 1):
        message = context.chat[index]
        if message.is_system:
            continue
        lines.append(f"[{index}] {message.name}: {message.text}")
    return "\n\n".join(lines)


def format_character_state(state: NarrativeState, name: str) -> str:
    char = state.characters.get(name)
    if char is None:
        return "(unknown)"
    outfit = ", ".join(f"{slot}: {item}" for slot, item in char.outfit.items() if item)
    return "\n".join([
        f"Position: {char.position or 'unknown'}",
        f"Activity: {char.activity or 'none'}",
        f"Mood: {', '.join(char.mood) or 'neutral'}",
        f"Physical: {', '.join(char.physical_state) or 'normal'}",
        f"Outfit: {outfit or 'unknown'}",
    ])


def format_scene(state: NarrativeState) -> str:
    loc = state.location
    place = ", ".join(p for p in (loc.position, loc.place, loc.area) if p)
    return "\n".join([
        f"Time: {state.time.isoformat(sep=' ') if state.time else 'unknown'}",
        f"Location: {place or 'unknown'}",
        f"Props: {', '.join(loc.props) or 'none'}",
        f"Topic: {state.topic or 'unknown'} / Tone: {state.tone or 'unknown'}",
        f"Tension: {state.tension.level} ({state.tension.type}, {state.tension.direction})",
        f"Present: {', '.join(state.characters_present) or 'nobody'}",
    ])


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------

class Extractor(ABC):
    name: ClassVar[str]
    display_name: ClassVar[str]
    category: ClassVar[str]
    prompt: ClassVar[PromptTemplate]
    default_temperature: ClassVar[float] = 0.5
    run_strategy: ClassVar[RunStrategy] = EveryMessage()
    message_strategy: ClassVar[MessageStrategy] = FixedNumber(n=4)

    def should_run(self, ctx: RunStrategyContext) -> bool:
        """Category enabled AND the run strategy fires."""
        return (
            ctx.settings.track.enabled(self.category)
            and evaluate_run_strategy(self.run_strategy, ctx)
        )

    def temperature(self, settings: ExtractionSettings, prompt_name: str | None = None) -> float:
        """Custom prompt temperature → per-prompt → per-category → default."""
        prompt_name = prompt_name or self.prompt.name
        custom = settings.custom_prompts.get(prompt_name)
        if custom is not None and custom.temperature is not None:
            return custom.temperature
        if prompt_name in settings.custom_temperatures:
            return settings.custom_temperatures[prompt_name]
        if self.category in settings.category_temperatures:
            return settings.category_temperatures[self.category]
        return self.default_temperature

    def window(self, turn: TurnContext) -> tuple[int, int]:
        return message_window(
            self.message_strategy, turn.store, turn.current_message,
            turn.swipe_context, turn.settings, self.name,
        )

    def prompt_values(self, turn: TurnContext, projection: NarrativeState) -> dict[str, Any]:
        start, end = self.window(turn)
        ctx = turn.context
        return {
            "messages": format_messages(ctx, start, end),
            "user_name": ctx.user_name,
            "character_name": ctx.character_name,
            "character_description": ctx.character_description,
            "scene": format_scene(projection),
            "characters_present": list(projection.characters_present),
            "present": ", ".join(projection.characters_present) or "nobody",
        }

    async def generate(
        self,
        turn: TurnContext,
        values: dict[str, Any],
        template: PromptTemplate | None = None,
    ) -> ParseResult:
        template = template or self.prompt
        built = build_prompt(template, values, turn.settings.custom_prompts)
        result = await generate_and_parse(
            turn.generator,
            template,
            built,
            self.temperature(turn.settings, template.name),
            runtime=turn.runtime,
            settings=turn.settings,
            abort=turn.abort,
        )
        if not result.success and not result.aborted:
            logger.debug("%s extraction failed: %s", self.name, result.error)
        return result


class GlobalExtractor(Extractor):
    @abstractmethod
    async def run(self, turn: TurnContext) -> list[EventBase]: ...


class PerCharacterExtractor(Extractor):
    batch_prompt: ClassVar[PromptTemplate | None] = None

    @abstractmethod
    async def run(self, turn: TurnContext, character: str) -> list[EventBase]: ...

    def supports_batch(self, settings: ExtractionSettings) -> bool:
        """Batch only without a custom prompt; custom text targets one character."""
        if self.batch_prompt is None:
            return False
        custom = settings.custom_prompts.get(self.prompt.name)
        return not (custom is not None and custom.overrides_template)

    async def run_batch(self, turn: TurnContext, characters: list[str]) -> list[EventBase]:
        raise NotImplementedError(f"{self.name} has no batch form")


class PerPairExtractor(Extractor):
    @abstractmethod
    async def run(self, turn: TurnContext, pair: tuple[str, str]) -> list[EventBase]: ...
