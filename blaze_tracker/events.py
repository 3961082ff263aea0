"""Event types — the only mutation primitive of the narrative state.

Every event is a frozen pydantic model tagged by (kind, subkind). The
`Event` annotated union dispatches on that pair, so a JSON event log can be
loaded back with EventListAdapter without knowing the concrete classes.

Character references come in three shapes, and name resolution has to
handle each of them:
  character                          — CharacterEvent subclasses
  from_character / toward_character  — DirectionalEvent subclasses
  pair (sorted)                      — PairEvent subclasses
"""

from __future__ import annotations

import time
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    field_validator,
)

from blaze_tracker.models import MessageAndSwipe, sort_pair


def _sorted_pair(value: Any) -> Any:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return sort_pair(str(value[0]), str(value[1]))
    return value


def new_event_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


class EventKindFilter(BaseModel):
    """Matches events by kind, and by subkind when one is given."""

    model_config = ConfigDict(frozen=True)

    kind: str
    subkind: str | None = None


class EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_event_id)
    source: MessageAndSwipe
    timestamp: int = Field(default_factory=now_ms)


# ---------------------------------------------------------------------------
# Time / location / scene
# ---------------------------------------------------------------------------

class TimeDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0


class TimeDeltaEvent(EventBase):
    kind: Literal["time"] = "time"
    subkind: Literal["delta"] = "delta"
    delta: TimeDelta


class LocationMovedEvent(EventBase):
    kind: Literal["location"] = "location"
    subkind: Literal["moved"] = "moved"
    new_area: str
    new_place: str
    new_position: str = ""


class PropAddedEvent(EventBase):
    kind: Literal["location"] = "location"
    subkind: Literal["prop_added"] = "prop_added"
    prop: str


class PropRemovedEvent(EventBase):
    kind: Literal["location"] = "location"
    subkind: Literal["prop_removed"] = "prop_removed"
    prop: str


class TopicToneChangedEvent(EventBase):
    kind: Literal["scene"] = "scene"
    subkind: Literal["topic_tone_changed"] = "topic_tone_changed"
    topic: str
    tone: str


class TensionChangedEvent(EventBase):
    kind: Literal["scene"] = "scene"
    subkind: Literal["tension_changed"] = "tension_changed"
    level: str
    type: str
    direction: str = "stable"


# ---------------------------------------------------------------------------
# Character events — all carry a `character` field
# ---------------------------------------------------------------------------

class CharacterEvent(EventBase):
    kind: Literal["character"] = "character"
    character: str


class CharacterAppearedEvent(CharacterEvent):
    subkind: Literal["appeared"] = "appeared"
    initial_position: str = ""
    initial_activity: str | None = None
    initial_mood: list[str] = Field(default_factory=list)
    initial_physical_state: list[str] = Field(default_factory=list)
    initial_outfit: dict[str, str | None] = Field(default_factory=dict)


class CharacterDepartedEvent(CharacterEvent):
    subkind: Literal["departed"] = "departed"


class PositionChangedEvent(CharacterEvent):
    subkind: Literal["position_changed"] = "position_changed"
    new_value: str
    previous_value: str | None = None


class ActivityChangedEvent(CharacterEvent):
    subkind: Literal["activity_changed"] = "activity_changed"
    new_value: str | None
    previous_value: str | None = None


class MoodAddedEvent(CharacterEvent):
    subkind: Literal["mood_added"] = "mood_added"
    value: str


class MoodRemovedEvent(CharacterEvent):
    subkind: Literal["mood_removed"] = "mood_removed"
    value: str


class PhysicalAddedEvent(CharacterEvent):
    subkind: Literal["physical_added"] = "physical_added"
    value: str


class PhysicalRemovedEvent(CharacterEvent):
    subkind: Literal["physical_removed"] = "physical_removed"
    value: str


class OutfitChangedEvent(CharacterEvent):
    subkind: Literal["outfit_changed"] = "outfit_changed"
    slot: str
    new_value: str | None
    previous_value: str | None = None


class AkasAddEvent(CharacterEvent):
    """Defines alternate names for `character`. Never itself resolved."""

    subkind: Literal["akas_add"] = "akas_add"
    akas: list[str]


# ---------------------------------------------------------------------------
# Relationship events
# ---------------------------------------------------------------------------

class DirectionalEvent(EventBase):
    kind: Literal["relationship"] = "relationship"
    from_character: str
    toward_character: str
    value: str


class FeelingAddedEvent(DirectionalEvent):
    subkind: Literal["feeling_added"] = "feeling_added"


class FeelingRemovedEvent(DirectionalEvent):
    subkind: Literal["feeling_removed"] = "feeling_removed"


class SecretAddedEvent(DirectionalEvent):
    subkind: Literal["secret_added"] = "secret_added"


class WantAddedEvent(DirectionalEvent):
    subkind: Literal["want_added"] = "want_added"


class PairEvent(EventBase):
    kind: Literal["relationship"] = "relationship"
    pair: tuple[str, str]

    @field_validator("pair", mode="before")
    @classmethod
    def _keep_sorted(cls, value: Any) -> Any:
        return _sorted_pair(value)


class StatusChangedEvent(PairEvent):
    subkind: Literal["status_changed"] = "status_changed"
    new_status: str
    previous_status: str | None = None


class SubjectEvent(PairEvent):
    """A subject of interaction between two characters (e.g. "trust")."""

    subkind: Literal["subject"] = "subject"
    subject: str
    deleted: bool = False


# ---------------------------------------------------------------------------
# Narrative / chapters
# ---------------------------------------------------------------------------

class NarrativeDescriptionEvent(EventBase):
    kind: Literal["narrative"] = "narrative"
    subkind: Literal["description"] = "description"
    description: str
    witnesses: list[str] = Field(default_factory=list)


class ChapterEndedEvent(EventBase):
    kind: Literal["chapter"] = "chapter"
    subkind: Literal["ended"] = "ended"
    chapter_index: int
    reason: str = ""


class ChapterDescribedEvent(EventBase):
    kind: Literal["chapter"] = "chapter"
    subkind: Literal["described"] = "described"
    chapter_index: int
    title: str
    summary: str


# ---------------------------------------------------------------------------
# Tagged union
# ---------------------------------------------------------------------------

def _event_tag(value: Any) -> str:
    if isinstance(value, dict):
        return f"{value.get('kind')}:{value.get('subkind')}"
    return f"{getattr(value, 'kind', None)}:{getattr(value, 'subkind', None)}"


Event = Annotated[
    Union[
        Annotated[TimeDeltaEvent, Tag("time:delta")],
        Annotated[LocationMovedEvent, Tag("location:moved")],
        Annotated[PropAddedEvent, Tag("location:prop_added")],
        Annotated[PropRemovedEvent, Tag("location:prop_removed")],
        Annotated[TopicToneChangedEvent, Tag("scene:topic_tone_changed")],
        Annotated[TensionChangedEvent, Tag("scene:tension_changed")],
        Annotated[CharacterAppearedEvent, Tag("character:appeared")],
        Annotated[CharacterDepartedEvent, Tag("character:departed")],
        Annotated[PositionChangedEvent, Tag("character:position_changed")],
        Annotated[ActivityChangedEvent, Tag("character:activity_changed")],
        Annotated[MoodAddedEvent, Tag("character:mood_added")],
        Annotated[MoodRemovedEvent, Tag("character:mood_removed")],
        Annotated[PhysicalAddedEvent, Tag("character:physical_added")],
        Annotated[PhysicalRemovedEvent, Tag("character:physical_removed")],
        Annotated[OutfitChangedEvent, Tag("character:outfit_changed")],
        Annotated[AkasAddEvent, Tag("character:akas_add")],
        Annotated[FeelingAddedEvent, Tag("relationship:feeling_added")],
        Annotated[FeelingRemovedEvent, Tag("relationship:feeling_removed")],
        Annotated[SecretAddedEvent, Tag("relationship:secret_added")],
        Annotated[WantAddedEvent, Tag("relationship:want_added")],
        Annotated[StatusChangedEvent, Tag("relationship:status_changed")],
        Annotated[SubjectEvent, Tag("relationship:subject")],
        Annotated[NarrativeDescriptionEvent, Tag("narrative:description")],
        Annotated[ChapterEndedEvent, Tag("chapter:ended")],
        Annotated[ChapterDescribedEvent, Tag("chapter:described")],
    ],
    Discriminator(_event_tag),
]

EventListAdapter: TypeAdapter[list[Event]] = TypeAdapter(list[Event])


def event_tag(event: EventBase) -> str:
    """"kind:subkind" label, used for logging and counting."""
    return _event_tag(event)


def matches_kind(event: EventBase, filters: list[EventKindFilter]) -> bool:
    kind = getattr(event, "kind", None)
    subkind = getattr(event, "subkind", None)
    return any(
        f.kind == kind and (f.subkind is None or f.subkind == subkind)
        for f in filters
    )


def character_refs(event: EventBase) -> list[str]:
    """Names an event refers to. akas_add events define names, so none."""
    if isinstance(event, AkasAddEvent):
        return []
    if isinstance(event, CharacterEvent):
        return [event.character]
    if isinstance(event, DirectionalEvent):
        return [event.from_character, event.toward_character]
    if isinstance(event, PairEvent):
        return list(event.pair)
    return []
