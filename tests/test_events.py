"""Tests for blaze_tracker.events — tagged union loading, pair ordering, kind filters."""

import pytest
from pydantic import ValidationError

from blaze_tracker.events import (
    AkasAddEvent,
    CharacterAppearedEvent,
    EventKindFilter,
    EventListAdapter,
    FeelingAddedEvent,
    StatusChangedEvent,
    SubjectEvent,
    TimeDelta,
    TimeDeltaEvent,
    character_refs,
    event_tag,
    matches_kind,
)
from blaze_tracker.models import MessageAndSwipe

SRC = MessageAndSwipe(message_id=3)


# ── Tagged union ─────────────────────────────────────────


def test_event_list_loads_concrete_classes():
    raw = [
        {"kind": "time", "subkind": "delta", "source": {"message_id": 1},
         "delta": {"hours": 2}},
        {"kind": "character", "subkind": "appeared", "source": {"message_id": 1},
         "character": "Luna"},
        {"kind": "relationship", "subkind": "status_changed", "source": {"message_id": 2},
         "pair": ["Luna", "Alex"], "new_status": "friendly"},
    ]
    events = EventListAdapter.validate_python(raw)
    assert isinstance(events[0], TimeDeltaEvent)
    assert events[0].delta.hours == 2
    assert isinstance(events[1], CharacterAppearedEvent)
    assert isinstance(events[2], StatusChangedEvent)


def test_event_list_dump_and_reload_keeps_ids():
    events = [
        TimeDeltaEvent(source=SRC, delta=TimeDelta(minutes=5)),
        AkasAddEvent(source=SRC, character="Luna", akas=["Lu"]),
    ]
    dumped = EventListAdapter.dump_python(events, mode="json")
    reloaded = EventListAdapter.validate_python(dumped)
    assert [e.id for e in reloaded] == [e.id for e in events]
    assert reloaded[1].akas == ["Lu"]


def test_unknown_kind_is_rejected():
    with pytest.raises(ValidationError):
        EventListAdapter.validate_python([
            {"kind": "weather", "subkind": "rain", "source": {"message_id": 0}},
        ])


def test_events_are_frozen():
    event = TimeDeltaEvent(source=SRC, delta=TimeDelta(hours=1))
    with pytest.raises(ValidationError):
        event.delta = TimeDelta(hours=2)


def test_event_ids_are_unique():
    a = AkasAddEvent(source=SRC, character="Luna", akas=[])
    b = AkasAddEvent(source=SRC, character="Luna", akas=[])
    assert a.id != b.id


# ── Pairs ────────────────────────────────────────────────


def test_pair_is_sorted_on_construction():
    event = StatusChangedEvent(source=SRC, pair=("Zed", "Amy"), new_status="close")
    assert event.pair == ("Amy", "Zed")


def test_subject_pair_is_sorted_when_loaded():
    [event] = EventListAdapter.validate_python([
        {"kind": "relationship", "subkind": "subject", "source": {"message_id": 0},
         "pair": ["Zed", "Amy"], "subject": "trust"},
    ])
    assert isinstance(event, SubjectEvent)
    assert event.pair == ("Amy", "Zed")


# ── Filters and references ───────────────────────────────


def test_matches_kind_without_subkind():
    event = StatusChangedEvent(source=SRC, pair=("A", "B"), new_status="close")
    assert matches_kind(event, [EventKindFilter(kind="relationship")])
    assert not matches_kind(event, [EventKindFilter(kind="character")])


def test_matches_kind_with_subkind():
    event = StatusChangedEvent(source=SRC, pair=("A", "B"), new_status="close")
    assert matches_kind(event, [EventKindFilter(kind="relationship", subkind="status_changed")])
    assert not matches_kind(event, [EventKindFilter(kind="relationship", subkind="subject")])


def test_event_tag():
    event = FeelingAddedEvent(source=SRC, from_character="A", toward_character="B", value="fond")
    assert event_tag(event) == "relationship:feeling_added"


def test_character_refs_by_shape():
    appeared = CharacterAppearedEvent(source=SRC, character="Luna")
    feeling = FeelingAddedEvent(source=SRC, from_character="A", toward_character="B", value="x")
    status = StatusChangedEvent(source=SRC, pair=("B", "A"), new_status="close")
    akas = AkasAddEvent(source=SRC, character="Luna", akas=["Lu"])
    assert character_refs(appeared) == ["Luna"]
    assert character_refs(feeling) == ["A", "B"]
    assert character_refs(status) == ["A", "B"]
    assert character_refs(akas) == []
    assert character_refs(TimeDeltaEvent(source=SRC, delta=TimeDelta())) == []
