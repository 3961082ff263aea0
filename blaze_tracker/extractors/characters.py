"""Character extractors: presence, nicknames, and per-character state."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from blaze_tracker.events import (
    ActivityChangedEvent,
    AkasAddEvent,
    CharacterAppearedEvent,
    CharacterDepartedEvent,
    EventBase,
    EventKindFilter,
    MoodAddedEvent,
    MoodRemovedEvent,
    OutfitChangedEvent,
    PhysicalAddedEvent,
    PhysicalRemovedEvent,
    PositionChangedEvent,
)
from blaze_tracker.extractors.base import (
    BatchExtractionError,
    GlobalExtractor,
    PerCharacterExtractor,
    TurnContext,
    format_character_state,
)
from blaze_tracker.models import CharacterState, MessageAndSwipe
from blaze_tracker.names import find_matching_character_key
from blaze_tracker.prompts import PromptTemplate
from blaze_tracker.strategies import EveryNMessages, FixedNumber, SinceLastEventOfKind

logger = logging.getLogger(__name__)


# ── Presence ─────────────────────────────────────────────


class AppearedCharacter(BaseModel):
    name: str
    position: str = ""
    activity: str | None = None
    mood: list[str] = Field(default_factory=list)
    physical_state: list[str] = Field(default_factory=list)
    outfit: dict[str, str | None] = Field(default_factory=dict)


class PresenceChange(BaseModel):
    reasoning: str = ""
    appeared: list[AppearedCharacter] = Field(default_factory=list)
    departed: list[str] = Field(default_factory=list)


PRESENCE_CHANGE_PROMPT = PromptTemplate(
    name="presence_change",
    description="Characters who entered or left the scene",
    system_prompt="""You track which characters are physically present in a roleplay scene.
{{{user_name}}} is the user's character.

Return strict JSON:
{"reasoning": "...",
 "appeared": [{"name": "...", "position": "...", "activity": "...",
               "mood": [], "physical_state": [], "outfit": {"torso": "..."}}],
 "departed": ["name"]}""",
    user_template="""Currently present: {{{present}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.3,
    response_model=PresenceChange,
)


class PresenceChangeExtractor(GlobalExtractor):
    name = "presence_change"
    display_name = "character presence"
    category = "characters"
    prompt = PRESENCE_CHANGE_PROMPT
    default_temperature = 0.3
    message_strategy = FixedNumber(n=2)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []
        data: PresenceChange = result.data
        present = list(projection.characters_present)
        events: list[EventBase] = []

        for char in data.appeared:
            if not char.name.strip():
                continue
            if find_matching_character_key(char.name, present):
                continue
            # A returning character keeps their canonical name.
            name = find_matching_character_key(char.name, list(projection.characters)) or char.name.strip()
            present.append(name)
            events.append(CharacterAppearedEvent(
                source=turn.source,
                character=name,
                initial_position=char.position,
                initial_activity=char.activity,
                initial_mood=char.mood,
                initial_physical_state=char.physical_state,
                initial_outfit=char.outfit,
            ))

        for departed in data.departed:
            name = find_matching_character_key(departed, present)
            if name is None:
                logger.debug("presence_change: %r departed but was not present", departed)
                continue
            present.remove(name)
            events.append(CharacterDepartedEvent(source=turn.source, character=name))
        return events


# ── Nicknames ────────────────────────────────────────────


class NicknameEntry(BaseModel):
    character: str
    names: list[str] = Field(default_factory=list)


class Nicknames(BaseModel):
    reasoning: str = ""
    nicknames: list[NicknameEntry] = Field(default_factory=list)


NICKNAME_PROMPT = PromptTemplate(
    name="nickname_extraction",
    description="Pet names, nicknames and aliases used for characters",
    system_prompt="""You find alternate names used for characters in a roleplay:
pet names, nicknames, shortened names, titles used as names, aliases.
Only list names actually used in the messages.

Return strict JSON:
{"reasoning": "...", "nicknames": [{"character": "canonical name", "names": ["..."]}]}""",
    user_template="""Known characters: {{{known_characters}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=Nicknames,
)


class NicknameExtractor(GlobalExtractor):
    name = "nickname_extraction"
    display_name = "nicknames"
    category = "characters"
    prompt = NICKNAME_PROMPT
    run_strategy = EveryNMessages(n=8)
    message_strategy = FixedNumber(n=8)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        names = list(projection.characters)
        values = self.prompt_values(turn, projection)
        values["known_characters"] = ", ".join(names)
        result = await self.generate(turn, values)
        if not result.success:
            return []

        events: list[EventBase] = []
        for entry in result.data.nicknames:
            resolved = find_matching_character_key(entry.character, names)
            if resolved is None:
                logger.warning("nickname_extraction: could not resolve character %r", entry.character)
                continue
            existing = {a.lower() for a in projection.characters[resolved].akas}
            existing.add(resolved.lower())
            new_akas: list[str] = []
            for nickname in entry.names:
                lower = nickname.strip().lower()
                if lower and lower not in existing:
                    existing.add(lower)
                    new_akas.append(nickname.strip())
            if new_akas:
                events.append(AkasAddEvent(source=turn.source, character=resolved, akas=new_akas))
        return events


# ── Position / activity (batch capable) ─────────────────


class PositionActivityChange(BaseModel):
    reasoning: str = ""
    character: str = ""
    position_changed: bool = False
    new_position: str | None = None
    activity_changed: bool = False
    new_activity: str | None = None


class BatchPositionActivityChange(BaseModel):
    reasoning: str = ""
    characters: list[PositionActivityChange]


_POSITION_ACTIVITY_RULES = """Position is where the character is within the scene
("leaning on the bar"). Activity is what they are doing ("polishing a glass"),
or null when idle."""

POSITION_ACTIVITY_PROMPT = PromptTemplate(
    name="position_activity_change",
    description="Position and activity changes for one character",
    system_prompt=f"""You detect position and activity changes for ONE target character.
{_POSITION_ACTIVITY_RULES}

Return strict JSON:
{{"reasoning": "...", "position_changed": true/false, "new_position": "...",
 "activity_changed": true/false, "new_activity": "... or null"}}""",
    user_template="""Target character: {{{target_character}}}

Current state:
{{{target_state}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=PositionActivityChange,
)

BATCH_POSITION_ACTIVITY_PROMPT = PromptTemplate(
    name="position_activity_change_batch",
    description="Position and activity changes for several characters in one call",
    system_prompt=f"""You detect position and activity changes for MULTIPLE target characters.
{_POSITION_ACTIVITY_RULES}

Return strict JSON:
{{"reasoning": "...", "characters": [
  {{"character": "Name", "position_changed": true/false, "new_position": "...",
   "activity_changed": true/false, "new_activity": "... or null"}}]}}

Include one object per target character. Do not include other characters.""",
    user_template="""Target characters: {{{target_characters}}}

Current states:
{{{target_states}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=BatchPositionActivityChange,
)


def map_position_activity(
    change: PositionActivityChange,
    character: str,
    state: CharacterState | None,
    source: MessageAndSwipe,
) -> list[EventBase]:
    events: list[EventBase] = []
    if change.position_changed and change.new_position:
        events.append(PositionChangedEvent(
            source=source,
            character=character,
            new_value=change.new_position,
            previous_value=(state.position or None) if state else None,
        ))
    if change.activity_changed:
        events.append(ActivityChangedEvent(
            source=source,
            character=character,
            new_value=change.new_activity,
            previous_value=state.activity if state else None,
        ))
    return events


class PositionActivityChangeExtractor(PerCharacterExtractor):
    name = "position_activity_change"
    display_name = "position & activity"
    category = "characters"
    prompt = POSITION_ACTIVITY_PROMPT
    batch_prompt = BATCH_POSITION_ACTIVITY_PROMPT
    run_strategy = EveryNMessages(n=2, offset=1)
    message_strategy = SinceLastEventOfKind(kinds=(
        EventKindFilter(kind="character", subkind="position_changed"),
        EventKindFilter(kind="character", subkind="activity_changed"),
    ))

    async def run(self, turn: TurnContext, character: str) -> list[EventBase]:
        projection = turn.projection()
        state = projection.characters.get(character)
        if state is None:
            logger.warning("position_activity_change: %r not found in projection", character)
            return []
        values = self.prompt_values(turn, projection)
        values.update(
            target_character=character,
            target_state=format_character_state(projection, character),
        )
        result = await self.generate(turn, values)
        if not result.success:
            return []
        return map_position_activity(result.data, character, state, turn.source)

    async def run_batch(self, turn: TurnContext, characters: list[str]) -> list[EventBase]:
        projection = turn.projection()
        values = self.prompt_values(turn, projection)
        values.update(
            target_character=characters[0] if characters else "",
            target_characters=", ".join(characters),
            target_states="\n\n".join(
                f"## {name}\n{format_character_state(projection, name)}" for name in characters
            ),
        )
        result = await self.generate(turn, values, self.batch_prompt)
        if result.aborted:
            return []
        if not result.success:
            raise BatchExtractionError(
                f"{self.batch_prompt.name} failed: {result.error}"
            )

        targets = {name.lower(): name for name in characters}
        events: list[EventBase] = []
        for change in result.data.characters:
            name = targets.get(change.character.lower())
            if name is None:
                continue
            events.extend(map_position_activity(
                change, name, projection.characters.get(name), turn.source,
            ))
        return events


# ── Mood / physical state ───────────────────────────────


class MoodPhysicalChange(BaseModel):
    reasoning: str = ""
    mood_added: list[str] = Field(default_factory=list)
    mood_removed: list[str] = Field(default_factory=list)
    physical_added: list[str] = Field(default_factory=list)
    physical_removed: list[str] = Field(default_factory=list)


MOOD_PHYSICAL_PROMPT = PromptTemplate(
    name="mood_physical_change",
    description="Mood and physical state changes for one character",
    system_prompt="""You track a character's moods ("anxious", "amused") and physical
states ("tired", "bleeding lip"). Only remove values that are listed as current.

Return strict JSON:
{"reasoning": "...", "mood_added": [], "mood_removed": [],
 "physical_added": [], "physical_removed": []}""",
    user_template="""Target character: {{{target_character}}}

Current state:
{{{target_state}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=MoodPhysicalChange,
)


class MoodPhysicalChangeExtractor(PerCharacterExtractor):
    name = "mood_physical_change"
    display_name = "mood & physical state"
    category = "characters"
    prompt = MOOD_PHYSICAL_PROMPT
    run_strategy = EveryNMessages(n=2)
    message_strategy = SinceLastEventOfKind(kinds=(
        EventKindFilter(kind="character", subkind="mood_added"),
        EventKindFilter(kind="character", subkind="mood_removed"),
        EventKindFilter(kind="character", subkind="physical_added"),
        EventKindFilter(kind="character", subkind="physical_removed"),
    ))

    async def run(self, turn: TurnContext, character: str) -> list[EventBase]:
        projection = turn.projection()
        state = projection.characters.get(character)
        if state is None:
            return []
        values = self.prompt_values(turn, projection)
        values.update(
            target_character=character,
            target_state=format_character_state(projection, character),
        )
        result = await self.generate(turn, values)
        if not result.success:
            return []
        data: MoodPhysicalChange = result.data

        current_mood = {m.lower() for m in state.mood}
        current_physical = {p.lower() for p in state.physical_state}
        src = turn.source
        events: list[EventBase] = []
        events += [MoodAddedEvent(source=src, character=character, value=v)
                   for v in data.mood_added if v.lower() not in current_mood]
        events += [MoodRemovedEvent(source=src, character=character, value=v)
                   for v in data.mood_removed if v.lower() in current_mood]
        events += [PhysicalAddedEvent(source=src, character=character, value=v)
                   for v in data.physical_added if v.lower() not in current_physical]
        events += [PhysicalRemovedEvent(source=src, character=character, value=v)
                   for v in data.physical_removed if v.lower() in current_physical]
        return events


# ── Outfit ───────────────────────────────────────────────


class OutfitSlotChange(BaseModel):
    slot: str
    new_value: str | None = None


class OutfitChange(BaseModel):
    reasoning: str = ""
    changes: list[OutfitSlotChange] = Field(default_factory=list)


OUTFIT_SLOTS = ("head", "neck", "jacket", "back", "torso", "legs", "footwear", "socks", "underwear")

OUTFIT_CHANGE_PROMPT = PromptTemplate(
    name="outfit_change",
    description="Clothing put on or taken off by one character",
    system_prompt=f"""You track what a character is wearing.
Slots: {", ".join(OUTFIT_SLOTS)}. Use null for a slot that became empty.

Return strict JSON:
{{"reasoning": "...", "changes": [{{"slot": "torso", "new_value": "... or null"}}]}}""",
    user_template="""Target character: {{{target_character}}}

Current state:
{{{target_state}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.4,
    response_model=OutfitChange,
)


class OutfitChangeExtractor(PerCharacterExtractor):
    name = "outfit_change"
    display_name = "outfit"
    category = "characters"
    prompt = OUTFIT_CHANGE_PROMPT
    default_temperature = 0.4
    message_strategy = SinceLastEventOfKind(kinds=(
        EventKindFilter(kind="character", subkind="outfit_changed"),
    ))

    async def run(self, turn: TurnContext, character: str) -> list[EventBase]:
        projection = turn.projection()
        state = projection.characters.get(character)
        if state is None:
            return []
        values = self.prompt_values(turn, projection)
        values.update(
            target_character=character,
            target_state=format_character_state(projection, character),
        )
        result = await self.generate(turn, values)
        if not result.success:
            return []

        events: list[EventBase] = []
        for change in result.data.changes:
            slot = change.slot.strip().lower()
            if slot not in OUTFIT_SLOTS:
                continue
            previous = state.outfit.get(slot)
            if (previous or None) == (change.new_value or None):
                continue
            events.append(OutfitChangedEvent(
                source=turn.source,
                character=character,
                slot=slot,
                new_value=change.new_value or None,
                previous_value=previous,
            ))
        return events
