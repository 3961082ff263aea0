"""Props extractor. Runs after the per-character phase so clothing that was
just taken off shows up as a candidate prop."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from blaze_tracker.events import EventBase, OutfitChangedEvent, PropAddedEvent, PropRemovedEvent
from blaze_tracker.extractors.base import GlobalExtractor, TurnContext
from blaze_tracker.prompts import PromptTemplate
from blaze_tracker.strategies import FixedNumber

logger = logging.getLogger(__name__)


class PropsChange(BaseModel):
    reasoning: str = ""
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


PROPS_CHANGE_PROMPT = PromptTemplate(
    name="props_change",
    description="Notable objects that appeared in or left the scene",
    system_prompt="""You track notable physical objects (props) in a roleplay scene.
Clothing a character took off this turn may now be lying around as a prop.
Only remove props from the current list.

Return strict JSON:
{"reasoning": "...", "added": ["..."], "removed": ["..."]}""",
    user_template="""Current props: {{{props}}}

Clothing changes this turn:
{{{outfit_changes}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=PropsChange,
)


def describe_outfit_changes(events: list[EventBase]) -> str:
    lines = []
    for event in events:
        if not isinstance(event, OutfitChangedEvent):
            continue
        if event.new_value is None and event.previous_value:
            lines.append(f"- {event.character} removed {event.previous_value} ({event.slot})")
        elif event.new_value:
            lines.append(f"- {event.character} put on {event.new_value} ({event.slot})")
    return "\n".join(lines) or "none"


class PropsChangeExtractor(GlobalExtractor):
    name = "props_change"
    display_name = "props"
    category = "props"
    prompt = PROPS_CHANGE_PROMPT
    message_strategy = FixedNumber(n=2)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        values = self.prompt_values(turn, projection)
        values.update(
            props=", ".join(projection.location.props) or "none",
            outfit_changes=describe_outfit_changes(turn.turn_events),
        )
        result = await self.generate(turn, values)
        if not result.success:
            return []
        data: PropsChange = result.data

        current = {p.lower() for p in projection.location.props}
        events: list[EventBase] = []
        for prop in data.added:
            if prop.strip() and prop.lower() not in current:
                current.add(prop.lower())
                events.append(PropAddedEvent(source=turn.source, prop=prop.strip()))
        for prop in data.removed:
            if prop.lower() in current:
                current.discard(prop.lower())
                events.append(PropRemovedEvent(source=turn.source, prop=prop))
        return events
