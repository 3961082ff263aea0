"""Projection: snapshot state ⊕ replay(events).

project() deep-copies its base and replays events in the order given, so the
same snapshot and the same ordered slice always yield equal states.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from blaze_tracker.events import (
    ActivityChangedEvent,
    AkasAddEvent,
    ChapterDescribedEvent,
    ChapterEndedEvent,
    CharacterAppearedEvent,
    CharacterDepartedEvent,
    CharacterEvent,
    DirectionalEvent,
    EventBase,
    FeelingAddedEvent,
    FeelingRemovedEvent,
    LocationMovedEvent,
    MoodAddedEvent,
    MoodRemovedEvent,
    NarrativeDescriptionEvent,
    OutfitChangedEvent,
    PhysicalAddedEvent,
    PhysicalRemovedEvent,
    PositionChangedEvent,
    PropAddedEvent,
    PropRemovedEvent,
    SecretAddedEvent,
    StatusChangedEvent,
    SubjectEvent,
    TensionChangedEvent,
    TimeDeltaEvent,
    TopicToneChangedEvent,
    WantAddedEvent,
)
from blaze_tracker.models import (
    Chapter,
    CharacterState,
    DirectionalAttitude,
    NarrativeEvent,
    NarrativeState,
    RelationshipState,
    TensionState,
    pair_key,
    sort_pair,
)

logger = logging.getLogger(__name__)


def project(base: NarrativeState, events: list[EventBase]) -> NarrativeState:
    """Replay `events` on top of a copy of `base`."""
    state = base.model_copy(deep=True)
    for event in events:
        _apply(state, event)
    return state


def apply_event(state: NarrativeState, event: EventBase) -> NarrativeState:
    """Return a new state with a single event applied."""
    return project(state, [event])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _add_unique(items: list[str], value: str) -> None:
    if value.lower() not in (i.lower() for i in items):
        items.append(value)


def _remove(items: list[str], value: str) -> None:
    items[:] = [i for i in items if i.lower() != value.lower()]


def _character(state: NarrativeState, name: str) -> CharacterState:
    char = state.characters.get(name)
    if char is None:
        char = CharacterState(name=name)
        state.characters[name] = char
    return char


def _relationship(state: NarrativeState, a: str, b: str) -> RelationshipState:
    key = pair_key(a, b)
    rel = state.relationships.get(key)
    if rel is None:
        rel = RelationshipState(pair=sort_pair(a, b))
        state.relationships[key] = rel
    return rel


def _chapter(state: NarrativeState, index: int) -> Chapter:
    for chapter in state.chapters:
        if chapter.index == index:
            return chapter
    chapter = Chapter(index=index)
    state.chapters.append(chapter)
    state.chapters.sort(key=lambda c: c.index)
    return chapter


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

def _apply(state: NarrativeState, event: EventBase) -> None:
    if isinstance(event, TimeDeltaEvent):
        if state.time is not None:
            d = event.delta
            state.time = state.time + timedelta(
                days=d.days, hours=d.hours, minutes=d.minutes, seconds=d.seconds,
            )

    elif isinstance(event, LocationMovedEvent):
        state.location.area = event.new_area
        state.location.place = event.new_place
        state.location.position = event.new_position
        state.location.props = []

    elif isinstance(event, PropAddedEvent):
        _add_unique(state.location.props, event.prop)

    elif isinstance(event, PropRemovedEvent):
        _remove(state.location.props, event.prop)

    elif isinstance(event, TopicToneChangedEvent):
        state.topic = event.topic
        state.tone = event.tone

    elif isinstance(event, TensionChangedEvent):
        state.tension = TensionState(
            level=event.level, type=event.type, direction=event.direction,
        )

    elif isinstance(event, CharacterEvent):
        _apply_character(state, event)

    elif isinstance(event, DirectionalEvent):
        _apply_directional(state, event)

    elif isinstance(event, StatusChangedEvent):
        _relationship(state, *event.pair).status = event.new_status

    elif isinstance(event, SubjectEvent):
        rel = _relationship(state, *event.pair)
        if event.deleted:
            _remove(rel.subjects, event.subject)
        else:
            _add_unique(rel.subjects, event.subject)

    elif isinstance(event, NarrativeDescriptionEvent):
        state.narrative_events.append(NarrativeEvent(
            message_id=event.source.message_id,
            description=event.description,
            witnesses=list(event.witnesses),
        ))

    elif isinstance(event, ChapterEndedEvent):
        chapter = _chapter(state, event.chapter_index)
        chapter.ended_at = event.source.message_id
        chapter.reason = event.reason
        state.current_chapter = max(state.current_chapter, event.chapter_index + 1)

    elif isinstance(event, ChapterDescribedEvent):
        chapter = _chapter(state, event.chapter_index)
        chapter.title = event.title
        chapter.summary = event.summary

    else:
        raise TypeError(f"Unhandled event type: {type(event).__name__}")


def _apply_character(state: NarrativeState, event: CharacterEvent) -> None:
    if isinstance(event, CharacterAppearedEvent):
        char = _character(state, event.character)
        char.position = event.initial_position or char.position
        if event.initial_activity is not None:
            char.activity = event.initial_activity
        for mood in event.initial_mood:
            _add_unique(char.mood, mood)
        for phys in event.initial_physical_state:
            _add_unique(char.physical_state, phys)
        char.outfit.update(event.initial_outfit)
        if event.character not in state.characters_present:
            state.characters_present.append(event.character)
        return

    if isinstance(event, CharacterDepartedEvent):
        if event.character in state.characters_present:
            state.characters_present.remove(event.character)
        return

    # Only appearances (or a snapshot) introduce characters.
    char = state.characters.get(event.character)
    if char is None:
        logger.debug("%s for unknown character %r ignored", event.subkind, event.character)
        return
    if isinstance(event, PositionChangedEvent):
        char.position = event.new_value
    elif isinstance(event, ActivityChangedEvent):
        char.activity = event.new_value
    elif isinstance(event, MoodAddedEvent):
        _add_unique(char.mood, event.value)
    elif isinstance(event, MoodRemovedEvent):
        _remove(char.mood, event.value)
    elif isinstance(event, PhysicalAddedEvent):
        _add_unique(char.physical_state, event.value)
    elif isinstance(event, PhysicalRemovedEvent):
        _remove(char.physical_state, event.value)
    elif isinstance(event, OutfitChangedEvent):
        char.outfit[event.slot] = event.new_value
    elif isinstance(event, AkasAddEvent):
        for aka in event.akas:
            if aka.strip() and aka.lower() != char.name.lower():
                _add_unique(char.akas, aka.strip())
    else:
        raise TypeError(f"Unhandled character event: {type(event).__name__}")


def _apply_directional(state: NarrativeState, event: DirectionalEvent) -> None:
    rel = _relationship(state, event.from_character, event.toward_character)
    attitude = rel.attitudes.setdefault(event.from_character, DirectionalAttitude())
    if isinstance(event, FeelingAddedEvent):
        _add_unique(attitude.feelings, event.value)
    elif isinstance(event, FeelingRemovedEvent):
        _remove(attitude.feelings, event.value)
    elif isinstance(event, SecretAddedEvent):
        _add_unique(attitude.secrets, event.value)
    elif isinstance(event, WantAddedEvent):
        _add_unique(attitude.wants, event.value)
    else:
        raise TypeError(f"Unhandled relationship event: {type(event).__name__}")
