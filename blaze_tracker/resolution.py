"""Rewrite character references in a turn's events to canonical names.

Runs once per turn after every phase has finished and before the turn is
appended. Events are frozen, so every rewrite produces a new event object.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel

from blaze_tracker.events import (
    AkasAddEvent,
    CharacterAppearedEvent,
    CharacterEvent,
    DirectionalEvent,
    EventBase,
    PairEvent,
)
from blaze_tracker.models import CharacterState, MessageAndSwipe, NarrativeState, sort_pair
from blaze_tracker.names import names_match, normalize_name

logger = logging.getLogger(__name__)


class NameMapping(BaseModel):
    unresolved_name: str
    resolved_to: str | None = None


def build_aka_lookup(characters: dict[str, CharacterState]) -> dict[str, str]:
    """Lowercased canonical names and AKAs → canonical name."""
    lookup: dict[str, str] = {}
    for name, char in characters.items():
        lookup[name.lower()] = name
        for aka in char.akas:
            lookup[aka.lower()] = name
    return lookup


def resolve_character_name(
    name: str, lookup: dict[str, str], canonical_names: list[str],
) -> str | None:
    direct = lookup.get(name.lower())
    if direct:
        return direct

    normalized = lookup.get(normalize_name(name))
    if normalized:
        return normalized

    for canonical in canonical_names:
        if names_match(canonical, name):
            return canonical

    for key, canonical in lookup.items():
        if names_match(key, name):
            return canonical

    return None


def _rewrite(event: EventBase, resolve) -> EventBase:
    """Apply `resolve(name) -> str | None` to every reference in `event`."""
    if isinstance(event, AkasAddEvent):
        return event

    if isinstance(event, CharacterEvent):
        new = resolve(event.character)
        if new and new != event.character:
            return event.model_copy(update={"character": new})
        return event

    if isinstance(event, DirectionalEvent):
        update = {}
        for field in ("from_character", "toward_character"):
            new = resolve(getattr(event, field))
            if new and new != getattr(event, field):
                update[field] = new
        return event.model_copy(update=update) if update else event

    if isinstance(event, PairEvent):
        a, b = event.pair
        pair = sort_pair(resolve(a) or a, resolve(b) or b)
        return event.model_copy(update={"pair": pair}) if pair != event.pair else event

    return event


def resolve_names_in_events(
    events: list[EventBase], lookup: dict[str, str], canonical_names: list[str],
) -> tuple[list[EventBase], list[str]]:
    """Returns (rewritten events, unresolved names in first-seen order)."""
    unresolved: list[str] = []

    def resolve(name: str) -> str | None:
        found = resolve_character_name(name, lookup, canonical_names)
        if found is None and name not in unresolved:
            unresolved.append(name)
        return found

    return [_rewrite(e, resolve) for e in events], unresolved


def apply_user_mappings(
    events: list[EventBase], mappings: list[NameMapping],
) -> list[EventBase]:
    table = {
        m.unresolved_name.lower(): m.resolved_to for m in mappings if m.resolved_to
    }
    if not table:
        return list(events)
    return [_rewrite(e, lambda name: table.get(name.lower())) for e in events]


# ---------------------------------------------------------------------------
# Interactive disambiguation
# ---------------------------------------------------------------------------

class NameDisambiguator(Protocol):
    async def resolve(
        self, unresolved_names: list[str], canonical_names: list[str],
    ) -> list[NameMapping]: ...


class NullDisambiguator:
    """Leaves every name unresolved."""

    async def resolve(
        self, unresolved_names: list[str], canonical_names: list[str],
    ) -> list[NameMapping]:
        return [NameMapping(unresolved_name=n) for n in unresolved_names]


class NameResolver:
    """Per-session name resolution with a cache of user answers.

    A name the user has already been asked about (answered or skipped) is
    never asked about again in the same session.
    """

    def __init__(self, disambiguator: NameDisambiguator | None = None) -> None:
        self.disambiguator = disambiguator or NullDisambiguator()
        self._answers: dict[str, str | None] = {}

    def reset(self) -> None:
        self._answers.clear()

    async def resolve_turn(
        self,
        turn_events: list[EventBase],
        projection: NarrativeState,
        source: MessageAndSwipe,
    ) -> list[EventBase]:
        lookup = build_aka_lookup(projection.characters)
        canonical_names = list(projection.characters)

        for event in turn_events:
            if isinstance(event, AkasAddEvent):
                for aka in event.akas:
                    lookup[aka.lower()] = event.character
                lookup[event.character.lower()] = event.character
        for event in turn_events:
            if isinstance(event, CharacterAppearedEvent) and event.character not in canonical_names:
                canonical_names.append(event.character)
                lookup[event.character.lower()] = event.character

        events, unresolved = resolve_names_in_events(turn_events, lookup, canonical_names)
        if not unresolved:
            return events

        mappings = [
            NameMapping(unresolved_name=n, resolved_to=self._answers[n.lower()])
            for n in unresolved if n.lower() in self._answers
        ]
        to_ask = [n for n in unresolved if n.lower() not in self._answers]

        fresh: list[NameMapping] = []
        if to_ask:
            logger.warning("Unresolved character names: %s", ", ".join(to_ask))
            fresh = await self.disambiguator.resolve(to_ask, canonical_names)
            answered = {m.unresolved_name.lower() for m in fresh}
            for mapping in fresh:
                self._answers[mapping.unresolved_name.lower()] = mapping.resolved_to
            # A name the disambiguator did not answer counts as skipped.
            for name in to_ask:
                if name.lower() not in answered:
                    self._answers[name.lower()] = None

        events = apply_user_mappings(events, mappings + fresh)

        for mapping in fresh:
            if not mapping.resolved_to:
                continue
            existing = projection.characters.get(mapping.resolved_to)
            akas = list(existing.akas) if existing else []
            if mapping.unresolved_name.lower() not in (a.lower() for a in akas):
                akas.append(mapping.unresolved_name)
            events.append(AkasAddEvent(
                source=source, character=mapping.resolved_to, akas=akas,
            ))
        return events
