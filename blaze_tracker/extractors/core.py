"""Scene-level extractors: time, location, topic/tone and tension."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from blaze_tracker.events import (
    EventBase,
    LocationMovedEvent,
    TensionChangedEvent,
    TimeDelta,
    TimeDeltaEvent,
    TopicToneChangedEvent,
)
from blaze_tracker.extractors.base import GlobalExtractor, TurnContext
from blaze_tracker.prompts import PromptTemplate
from blaze_tracker.strategies import FixedNumber

logger = logging.getLogger(__name__)

_SCENE_USER = """Current scene:
{{{scene}}}

Messages:
{{{messages}}}

Return JSON only."""


# ── Time ─────────────────────────────────────────────────


class TimeChange(BaseModel):
    reasoning: str = ""
    changed: bool = False
    delta: TimeDelta = Field(default_factory=TimeDelta)


TIME_CHANGE_PROMPT = PromptTemplate(
    name="time_change",
    description="How much in-story time passed in the latest messages",
    system_prompt="""You track the passage of time in a roleplay.
Estimate how much in-story time passed during the newest messages.

Return strict JSON:
{"reasoning": "...", "changed": true/false,
 "delta": {"days": 0, "hours": 0, "minutes": 0, "seconds": 0}}""",
    user_template=_SCENE_USER,
    default_temperature=0.3,
    response_model=TimeChange,
)


class TimeChangeExtractor(GlobalExtractor):
    name = "time_change"
    display_name = "time"
    category = "time"
    prompt = TIME_CHANGE_PROMPT
    default_temperature = 0.3
    message_strategy = FixedNumber(n=2)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []
        data: TimeChange = result.data
        delta = data.delta
        if not data.changed or not any((delta.days, delta.hours, delta.minutes, delta.seconds)):
            return []
        return [TimeDeltaEvent(source=turn.source, delta=delta)]


# ── Location ─────────────────────────────────────────────


class LocationChange(BaseModel):
    reasoning: str = ""
    moved: bool = False
    area: str = ""
    place: str = ""
    position: str = ""


LOCATION_CHANGE_PROMPT = PromptTemplate(
    name="location_change",
    description="Whether the scene moved to a new location",
    system_prompt="""You track where a roleplay scene takes place.
Decide whether the scene moved somewhere new in the newest messages.

Return strict JSON:
{"reasoning": "...", "moved": true/false,
 "area": "city or region", "place": "building or site", "position": "spot within the place"}""",
    user_template=_SCENE_USER,
    default_temperature=0.3,
    response_model=LocationChange,
)


class LocationChangeExtractor(GlobalExtractor):
    name = "location_change"
    display_name = "location"
    category = "location"
    prompt = LOCATION_CHANGE_PROMPT
    default_temperature = 0.3
    message_strategy = FixedNumber(n=3)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []
        data: LocationChange = result.data
        if not data.moved or not (data.area or data.place):
            return []
        loc = projection.location
        if (data.area, data.place, data.position) == (loc.area, loc.place, loc.position):
            return []
        return [LocationMovedEvent(
            source=turn.source,
            new_area=data.area or loc.area,
            new_place=data.place,
            new_position=data.position,
        )]


# ── Topic / tone ─────────────────────────────────────────


class TopicToneChange(BaseModel):
    reasoning: str = ""
    changed: bool = False
    topic: str = ""
    tone: str = ""


TOPIC_TONE_CHANGE_PROMPT = PromptTemplate(
    name="topic_tone_change",
    description="Whether the conversation topic or emotional tone shifted",
    system_prompt="""You track what a roleplay scene is about.
Decide whether the topic or tone changed in the newest messages.

Return strict JSON:
{"reasoning": "...", "changed": true/false, "topic": "2-4 words", "tone": "1-2 words"}""",
    user_template=_SCENE_USER,
    default_temperature=0.5,
    response_model=TopicToneChange,
)


class TopicToneChangeExtractor(GlobalExtractor):
    name = "topic_tone_change"
    display_name = "topic & tone"
    category = "scene"
    prompt = TOPIC_TONE_CHANGE_PROMPT
    message_strategy = FixedNumber(n=3)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []
        data: TopicToneChange = result.data
        if not data.changed or not data.topic:
            return []
        if data.topic == projection.topic and data.tone == projection.tone:
            return []
        return [TopicToneChangedEvent(
            source=turn.source, topic=data.topic, tone=data.tone or projection.tone,
        )]


# ── Tension ──────────────────────────────────────────────


class TensionChange(BaseModel):
    reasoning: str = ""
    changed: bool = False
    level: str = ""
    type: str = ""
    direction: str = "stable"


TENSION_CHANGE_PROMPT = PromptTemplate(
    name="tension_change",
    description="Whether the dramatic tension of the scene changed",
    system_prompt="""You track dramatic tension in a roleplay scene.
Levels: relaxed, aware, guarded, tense, charged, volatile, explosive.
Types: conversation, confrontation, intimate, suspense, combat, negotiation, celebration.
Directions: escalating, stable, decreasing.

Return strict JSON:
{"reasoning": "...", "changed": true/false, "level": "...", "type": "...", "direction": "..."}""",
    user_template=_SCENE_USER,
    default_temperature=0.5,
    response_model=TensionChange,
)


class TensionChangeExtractor(GlobalExtractor):
    name = "tension_change"
    display_name = "tension"
    category = "scene"
    prompt = TENSION_CHANGE_PROMPT
    message_strategy = FixedNumber(n=3)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []
        data: TensionChange = result.data
        if not data.changed or not data.level:
            return []
        current = projection.tension
        new = (data.level, data.type or current.type, data.direction or "stable")
        if new == (current.level, current.type, current.direction):
            return []
        return [TensionChangedEvent(
            source=turn.source, level=new[0], type=new[1], direction=new[2],
        )]
