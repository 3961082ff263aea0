"""Tests for blaze_tracker.projection — replaying events onto a state."""

from datetime import datetime

from blaze_tracker.events import (
    AkasAddEvent,
    ChapterDescribedEvent,
    ChapterEndedEvent,
    CharacterAppearedEvent,
    CharacterDepartedEvent,
    FeelingAddedEvent,
    FeelingRemovedEvent,
    LocationMovedEvent,
    MoodAddedEvent,
    MoodRemovedEvent,
    NarrativeDescriptionEvent,
    OutfitChangedEvent,
    PositionChangedEvent,
    PropAddedEvent,
    PropRemovedEvent,
    StatusChangedEvent,
    SubjectEvent,
    TensionChangedEvent,
    TimeDelta,
    TimeDeltaEvent,
    TopicToneChangedEvent,
)
from blaze_tracker.models import CharacterState, MessageAndSwipe, NarrativeState
from blaze_tracker.projection import apply_event, project

SRC = MessageAndSwipe(message_id=0)


def _with_luna() -> NarrativeState:
    return NarrativeState(characters={"Luna": CharacterState(name="Luna")})


def test_project_does_not_mutate_base():
    base = NarrativeState()
    project(base, [CharacterAppearedEvent(source=SRC, character="Luna")])
    assert base.characters == {}
    assert base.characters_present == []


def test_project_is_deterministic():
    events = [
        CharacterAppearedEvent(source=SRC, character="Luna", initial_mood=["calm"]),
        MoodAddedEvent(source=SRC, character="Luna", value="curious"),
    ]
    assert project(NarrativeState(), events) == project(NarrativeState(), events)


def test_time_delta_advances_clock():
    base = NarrativeState(time=datetime(2024, 5, 1, 20, 0))
    state = apply_event(base, TimeDeltaEvent(source=SRC, delta=TimeDelta(hours=1, minutes=30)))
    assert state.time == datetime(2024, 5, 1, 21, 30)


def test_time_delta_without_clock_is_ignored():
    state = apply_event(NarrativeState(), TimeDeltaEvent(source=SRC, delta=TimeDelta(hours=1)))
    assert state.time is None


def test_location_move_clears_props():
    state = project(NarrativeState(), [
        PropAddedEvent(source=SRC, prop="candle"),
        LocationMovedEvent(source=SRC, new_area="Harbor", new_place="Dock"),
    ])
    assert state.location.area == "Harbor"
    assert state.location.place == "Dock"
    assert state.location.props == []


def test_props_are_case_insensitive_sets():
    state = project(NarrativeState(), [
        PropAddedEvent(source=SRC, prop="Candle"),
        PropAddedEvent(source=SRC, prop="candle"),
        PropAddedEvent(source=SRC, prop="map"),
        PropRemovedEvent(source=SRC, prop="MAP"),
    ])
    assert state.location.props == ["Candle"]


def test_scene_events():
    state = project(NarrativeState(), [
        TopicToneChangedEvent(source=SRC, topic="the heist", tone="tense"),
        TensionChangedEvent(source=SRC, level="charged", type="confrontation", direction="escalating"),
    ])
    assert (state.topic, state.tone) == ("the heist", "tense")
    assert state.tension.level == "charged"
    assert state.tension.direction == "escalating"


# ── Characters ───────────────────────────────────────────


class TestCharacters:
    def test_appeared_sets_initial_state(self) -> None:
        state = apply_event(NarrativeState(), CharacterAppearedEvent(
            source=SRC, character="Luna", initial_position="by the bar",
            initial_mood=["calm"], initial_outfit={"torso": "leather vest"},
        ))
        luna = state.characters["Luna"]
        assert luna.position == "by the bar"
        assert luna.mood == ["calm"]
        assert luna.outfit == {"torso": "leather vest"}
        assert state.characters_present == ["Luna"]

    def test_departed_keeps_character_record(self) -> None:
        state = project(NarrativeState(), [
            CharacterAppearedEvent(source=SRC, character="Luna"),
            CharacterDepartedEvent(source=SRC, character="Luna"),
        ])
        assert state.characters_present == []
        assert "Luna" in state.characters

    def test_reappearing_character_keeps_previous_state(self) -> None:
        state = project(NarrativeState(), [
            CharacterAppearedEvent(source=SRC, character="Luna", initial_position="door"),
            MoodAddedEvent(source=SRC, character="Luna", value="tired"),
            CharacterDepartedEvent(source=SRC, character="Luna"),
            CharacterAppearedEvent(source=SRC, character="Luna"),
        ])
        assert state.characters["Luna"].position == "door"
        assert state.characters["Luna"].mood == ["tired"]
        assert state.characters_present == ["Luna"]

    def test_mood_add_and_remove(self) -> None:
        state = project(_with_luna(), [
            MoodAddedEvent(source=SRC, character="Luna", value="anxious"),
            MoodAddedEvent(source=SRC, character="Luna", value="amused"),
            MoodRemovedEvent(source=SRC, character="Luna", value="Anxious"),
        ])
        assert state.characters["Luna"].mood == ["amused"]

    def test_position_and_outfit(self) -> None:
        state = project(_with_luna(), [
            PositionChangedEvent(source=SRC, character="Luna", new_value="on the stairs"),
            OutfitChangedEvent(source=SRC, character="Luna", slot="jacket", new_value="coat"),
            OutfitChangedEvent(source=SRC, character="Luna", slot="jacket", new_value=None),
        ])
        luna = state.characters["Luna"]
        assert luna.position == "on the stairs"
        assert luna.outfit == {"jacket": None}

    def test_akas_skip_canonical_name_and_duplicates(self) -> None:
        state = project(_with_luna(), [
            AkasAddEvent(source=SRC, character="Luna", akas=["Lu", "luna", "Moon"]),
            AkasAddEvent(source=SRC, character="Luna", akas=["lu"]),
        ])
        assert state.characters["Luna"].akas == ["Lu", "Moon"]

    def test_unknown_character_is_not_created(self) -> None:
        state = project(_with_luna(), [
            MoodAddedEvent(source=SRC, character="the stranger", value="wary"),
            PositionChangedEvent(source=SRC, character="the stranger", new_value="corner"),
            AkasAddEvent(source=SRC, character="the stranger", akas=["stranger"]),
        ])
        assert list(state.characters) == ["Luna"]
        assert state.characters_present == []

    def test_relationship_events_do_not_create_characters(self) -> None:
        state = project(NarrativeState(), [
            FeelingAddedEvent(source=SRC, from_character="Ghost", toward_character="Luna", value="cold"),
            StatusChangedEvent(source=SRC, pair=("Ghost", "Luna"), new_status="tense"),
        ])
        assert state.characters == {}


# ── Relationships ────────────────────────────────────────


class TestRelationships:
    def test_status_uses_sorted_pair_key(self) -> None:
        state = apply_event(NarrativeState(), StatusChangedEvent(
            source=SRC, pair=("Luna", "Alex"), new_status="friendly",
        ))
        assert state.relationships["Alex|Luna"].status == "friendly"
        assert state.relationships["Alex|Luna"].pair == ("Alex", "Luna")

    def test_feelings_are_directional(self) -> None:
        state = project(NarrativeState(), [
            FeelingAddedEvent(source=SRC, from_character="Luna", toward_character="Alex", value="fond"),
            FeelingAddedEvent(source=SRC, from_character="Alex", toward_character="Luna", value="wary"),
            FeelingRemovedEvent(source=SRC, from_character="Alex", toward_character="Luna", value="wary"),
        ])
        rel = state.relationships["Alex|Luna"]
        assert rel.attitudes["Luna"].feelings == ["fond"]
        assert rel.attitudes["Alex"].feelings == []

    def test_subject_add_and_delete(self) -> None:
        state = project(NarrativeState(), [
            SubjectEvent(source=SRC, pair=("A", "B"), subject="trust"),
            SubjectEvent(source=SRC, pair=("B", "A"), subject="the map"),
            SubjectEvent(source=SRC, pair=("A", "B"), subject="Trust", deleted=True),
        ])
        assert state.relationships["A|B"].subjects == ["the map"]


# ── Narrative / chapters ─────────────────────────────────


def test_narrative_description_recorded_with_message():
    src = MessageAndSwipe(message_id=7)
    state = apply_event(NarrativeState(), NarrativeDescriptionEvent(
        source=src, description="Luna reveals the map.", witnesses=["Alex"],
    ))
    assert state.narrative_events[0].message_id == 7
    assert state.narrative_events[0].witnesses == ["Alex"]


def test_chapter_end_and_description():
    src = MessageAndSwipe(message_id=12)
    state = project(NarrativeState(), [
        ChapterEndedEvent(source=src, chapter_index=0, reason="time_jump"),
        ChapterDescribedEvent(source=src, chapter_index=0, title="Arrival", summary="They meet."),
    ])
    assert state.current_chapter == 1
    chapter = state.chapters[0]
    assert (chapter.ended_at, chapter.reason) == (12, "time_jump")
    assert (chapter.title, chapter.summary) == ("Arrival", "They meet.")
