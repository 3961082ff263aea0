"""Narrative and chapter extractors."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from blaze_tracker.events import (
    ChapterDescribedEvent,
    ChapterEndedEvent,
    EventBase,
    EventKindFilter,
    NarrativeDescriptionEvent,
)
from blaze_tracker.extractors.base import GlobalExtractor, TurnContext
from blaze_tracker.names import find_matching_character_key
from blaze_tracker.prompts import PromptTemplate
from blaze_tracker.strategies import FixedNumber, NewEventsOfKind, SinceLastEventOfKind

logger = logging.getLogger(__name__)

CHAPTER_ENDED = EventKindFilter(kind="chapter", subkind="ended")


# ── Narrative description ───────────────────────────────


class NarrativeDescription(BaseModel):
    reasoning: str = ""
    description: str | None = None
    witnesses: list[str] = Field(default_factory=list)


NARRATIVE_PROMPT = PromptTemplate(
    name="narrative_description",
    description="One-sentence summary of a story-significant moment, if any",
    system_prompt="""You keep a log of significant story moments in a roleplay.
If the newest messages contain one, describe it in a single sentence and list
the characters who witnessed it. Otherwise use null.

Return strict JSON:
{"reasoning": "...", "description": "... or null", "witnesses": ["..."]}""",
    user_template="""Current scene:
{{{scene}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.6,
    response_model=NarrativeDescription,
)


class NarrativeDescriptionExtractor(GlobalExtractor):
    name = "narrative_description"
    display_name = "narrative"
    category = "narrative"
    prompt = NARRATIVE_PROMPT
    default_temperature = 0.6
    message_strategy = FixedNumber(n=2)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []
        data: NarrativeDescription = result.data
        if not data.description or not data.description.strip():
            return []
        known = list(projection.characters)
        witnesses = [find_matching_character_key(w, known) or w for w in data.witnesses]
        return [NarrativeDescriptionEvent(
            source=turn.source,
            description=data.description.strip(),
            witnesses=witnesses,
        )]


# ── Chapter boundaries ──────────────────────────────────


class ChapterEnded(BaseModel):
    reasoning: str = ""
    ended: bool = False
    reason: str = ""


CHAPTER_ENDED_PROMPT = PromptTemplate(
    name="chapter_ended",
    description="Whether the story reached a natural chapter break",
    system_prompt="""You decide whether a roleplay just reached a natural chapter break:
a major location change, a large time skip, or the resolution of a plot thread.

Return strict JSON:
{"reasoning": "...", "ended": true/false, "reason": "location_change | time_jump | plot_resolution | other"}""",
    user_template="""Current scene:
{{{scene}}}

Messages since the chapter started:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.4,
    response_model=ChapterEnded,
)


class ChapterEndedExtractor(GlobalExtractor):
    name = "chapter_ended"
    display_name = "chapter boundary"
    category = "chapters"
    prompt = CHAPTER_ENDED_PROMPT
    default_temperature = 0.4
    message_strategy = SinceLastEventOfKind(kinds=(CHAPTER_ENDED,))

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success or not result.data.ended:
            return []
        return [ChapterEndedEvent(
            source=turn.source,
            chapter_index=projection.current_chapter,
            reason=result.data.reason,
        )]


class ChapterDescription(BaseModel):
    reasoning: str = ""
    title: str
    summary: str


CHAPTER_DESCRIPTION_PROMPT = PromptTemplate(
    name="chapter_description",
    description="Title and summary for a chapter that just ended",
    system_prompt="""You name and summarise a finished chapter of a roleplay.

Return strict JSON:
{"reasoning": "...", "title": "3-6 words", "summary": "2-3 sentences"}""",
    user_template="""Chapter messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=ChapterDescription,
)


class ChapterDescriptionExtractor(GlobalExtractor):
    """Fires only on turns that ended a chapter; sees the whole chapter."""

    name = "chapter_description"
    display_name = "chapter description"
    category = "chapters"
    prompt = CHAPTER_DESCRIPTION_PROMPT
    run_strategy = NewEventsOfKind(kinds=(CHAPTER_ENDED,))
    message_strategy = SinceLastEventOfKind(kinds=(CHAPTER_ENDED,))

    async def run(self, turn: TurnContext) -> list[EventBase]:
        ended = [e for e in turn.turn_events if isinstance(e, ChapterEndedEvent)]
        if not ended:
            return []
        result = await self.generate(turn, self.prompt_values(turn, turn.projection()))
        if not result.success:
            return []
        data: ChapterDescription = result.data
        return [ChapterDescribedEvent(
            source=turn.source,
            chapter_index=ended[-1].chapter_index,
            title=data.title.strip(),
            summary=data.summary.strip(),
        )]
