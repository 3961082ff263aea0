"""Core narrative data model.

Snapshots and projections both carry a NarrativeState. Events (see
blaze_tracker.events) are the only way a NarrativeState changes; these
models are never updated in place by extractors.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MessageAndSwipe(BaseModel):
    """Position in the chat: a message id plus the swipe shown for it."""

    model_config = ConfigDict(frozen=True)

    message_id: int
    swipe_id: int = 0


class ChatMessage(BaseModel):
    """A single chat turn as the host sees it."""

    name: str
    text: str
    is_user: bool = False
    is_system: bool = False
    swipe_id: int = 0


class ExtractionContext(BaseModel):
    """The chat transcript and names extractors may reference."""

    chat: list[ChatMessage] = Field(default_factory=list)
    user_name: str = "User"
    character_name: str = ""
    character_description: str = ""


class SwipeContext(BaseModel):
    """Active swipe per message. Messages not listed show swipe 0."""

    active: dict[int, int] = Field(default_factory=dict)

    def active_swipe(self, message_id: int) -> int:
        return self.active.get(message_id, 0)

    def is_active(self, source: MessageAndSwipe) -> bool:
        return self.active_swipe(source.message_id) == source.swipe_id

    @classmethod
    def from_chat(cls, chat: list[ChatMessage]) -> SwipeContext:
        return cls(active={i: m.swipe_id for i, m in enumerate(chat) if m.swipe_id})


# ---------------------------------------------------------------------------
# Character pairs
# ---------------------------------------------------------------------------

def sort_pair(a: str, b: str) -> tuple[str, str]:
    """Order two names lexicographically so (A, B) and (B, A) coincide."""
    return (a, b) if a <= b else (b, a)


def pair_key(a: str, b: str) -> str:
    first, second = sort_pair(a, b)
    return f"{first}|{second}"


# ---------------------------------------------------------------------------
# Narrative state
# ---------------------------------------------------------------------------

class CharacterState(BaseModel):
    name: str
    position: str = ""
    activity: str | None = None
    mood: list[str] = Field(default_factory=list)
    physical_state: list[str] = Field(default_factory=list)
    outfit: dict[str, str | None] = Field(default_factory=dict)
    akas: list[str] = Field(default_factory=list)


class DirectionalAttitude(BaseModel):
    """How one character regards another."""

    feelings: list[str] = Field(default_factory=list)
    secrets: list[str] = Field(default_factory=list)
    wants: list[str] = Field(default_factory=list)


class RelationshipState(BaseModel):
    pair: tuple[str, str]
    status: str = "strangers"
    # keyed by the name of the character holding the attitude
    attitudes: dict[str, DirectionalAttitude] = Field(default_factory=dict)
    subjects: list[str] = Field(default_factory=list)


class LocationState(BaseModel):
    area: str = ""
    place: str = ""
    position: str = ""
    props: list[str] = Field(default_factory=list)


class TensionState(BaseModel):
    level: str = "relaxed"
    type: str = "conversation"
    direction: str = "stable"


class Chapter(BaseModel):
    index: int
    title: str = ""
    summary: str = ""
    ended_at: int | None = None  # message id of the chapter_ended event
    reason: str | None = None


class NarrativeEvent(BaseModel):
    message_id: int
    description: str
    witnesses: list[str] = Field(default_factory=list)


class NarrativeState(BaseModel):
    """Everything the tracker knows about the story at one point in the chat."""

    time: datetime | None = None
    location: LocationState = Field(default_factory=LocationState)
    topic: str = ""
    tone: str = ""
    tension: TensionState = Field(default_factory=TensionState)
    characters: dict[str, CharacterState] = Field(default_factory=dict)
    characters_present: list[str] = Field(default_factory=list)
    relationships: dict[str, RelationshipState] = Field(default_factory=dict)
    chapters: list[Chapter] = Field(default_factory=list)
    current_chapter: int = 0
    narrative_events: list[NarrativeEvent] = Field(default_factory=list)


SnapshotKind = Literal["initial", "checkpoint"]


class Snapshot(BaseModel):
    """Materialised state at a message, used as a replay base."""

    source: MessageAndSwipe
    kind: SnapshotKind = "checkpoint"
    state: NarrativeState = Field(default_factory=NarrativeState)
