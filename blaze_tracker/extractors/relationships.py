"""Relationship extractors: interaction subjects (global), feelings and
status (per sorted pair)."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from blaze_tracker.events import (
    EventBase,
    FeelingAddedEvent,
    FeelingRemovedEvent,
    SecretAddedEvent,
    StatusChangedEvent,
    SubjectEvent,
    WantAddedEvent,
)
from blaze_tracker.extractors.base import GlobalExtractor, PerPairExtractor, TurnContext
from blaze_tracker.models import NarrativeState, pair_key, sort_pair
from blaze_tracker.names import find_matching_character_key
from blaze_tracker.prompts import PromptTemplate
from blaze_tracker.strategies import EveryNMessages, FixedNumber

logger = logging.getLogger(__name__)

RELATIONSHIP_STATUSES = (
    "strangers", "acquaintances", "friendly", "close", "intimate", "strained", "hostile", "complicated",
)


def format_relationship(state: NarrativeState, a: str, b: str) -> str:
    rel = state.relationships.get(pair_key(a, b))
    if rel is None:
        return "Status: strangers"
    lines = [f"Status: {rel.status}"]
    for holder in sort_pair(a, b):
        attitude = rel.attitudes.get(holder)
        if attitude is None:
            continue
        other = b if holder == a else a
        lines.append(f"{holder} toward {other}: feels {', '.join(attitude.feelings) or 'nothing notable'}")
    if rel.subjects:
        lines.append(f"Subjects: {', '.join(rel.subjects)}")
    return "\n".join(lines)


# ── Subjects ─────────────────────────────────────────────


class SubjectEntry(BaseModel):
    pair: list[str]
    subject: str


class RelationshipSubjects(BaseModel):
    reasoning: str = ""
    subjects: list[SubjectEntry] = Field(default_factory=list)


SUBJECTS_PROMPT = PromptTemplate(
    name="relationship_subjects",
    description="What pairs of characters interacted about",
    system_prompt="""You identify meaningful subjects of interaction between pairs of
characters in a roleplay ("trust", "a shared secret", "the missing map").

Return strict JSON:
{"reasoning": "...", "subjects": [{"pair": ["A", "B"], "subject": "..."}]}""",
    user_template="""Characters present: {{{present}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=RelationshipSubjects,
)


class RelationshipSubjectsExtractor(GlobalExtractor):
    name = "relationship_subjects"
    display_name = "relationship subjects"
    category = "relationships"
    prompt = SUBJECTS_PROMPT
    message_strategy = FixedNumber(n=2)

    async def run(self, turn: TurnContext) -> list[EventBase]:
        projection = turn.projection()
        present = list(projection.characters_present)
        if len(present) < 2:
            return []
        result = await self.generate(turn, self.prompt_values(turn, projection))
        if not result.success:
            return []

        events: list[EventBase] = []
        seen: set[tuple[str, str, str]] = set()
        for entry in result.data.subjects:
            if len(entry.pair) != 2 or not entry.subject.strip():
                continue
            a = find_matching_character_key(entry.pair[0], present)
            b = find_matching_character_key(entry.pair[1], present)
            if a is None or b is None or a == b:
                continue
            pair = sort_pair(a, b)
            subject = entry.subject.strip()
            rel = projection.relationships.get(pair_key(*pair))
            if rel and subject.lower() in (s.lower() for s in rel.subjects):
                continue
            key = (*pair, subject.lower())
            if key in seen:
                continue
            seen.add(key)
            events.append(SubjectEvent(source=turn.source, pair=pair, subject=subject))
        return events


# ── Feelings (directional) ───────────────────────────────


class DirectionalChange(BaseModel):
    from_character: str
    toward_character: str
    feelings_added: list[str] = Field(default_factory=list)
    feelings_removed: list[str] = Field(default_factory=list)
    secrets_added: list[str] = Field(default_factory=list)
    wants_added: list[str] = Field(default_factory=list)


class FeelingsChange(BaseModel):
    reasoning: str = ""
    changes: list[DirectionalChange] = Field(default_factory=list)


FEELINGS_PROMPT = PromptTemplate(
    name="feelings_change",
    description="How two characters' feelings toward each other changed",
    system_prompt="""You track how two characters regard each other. Attitudes are
directional: what A feels toward B can differ from what B feels toward A.

Return strict JSON:
{"reasoning": "...", "changes": [{"from_character": "A", "toward_character": "B",
  "feelings_added": [], "feelings_removed": [], "secrets_added": [], "wants_added": []}]}""",
    user_template="""Pair: {{{pair_a}}} and {{{pair_b}}}

Current relationship:
{{{relationship}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.5,
    response_model=FeelingsChange,
)


class FeelingsChangeExtractor(PerPairExtractor):
    name = "feelings_change"
    display_name = "feelings"
    category = "relationships"
    prompt = FEELINGS_PROMPT
    message_strategy = FixedNumber(n=3)

    async def run(self, turn: TurnContext, pair: tuple[str, str]) -> list[EventBase]:
        projection = turn.projection()
        a, b = pair
        values = self.prompt_values(turn, projection)
        values.update(pair_a=a, pair_b=b, relationship=format_relationship(projection, a, b))
        result = await self.generate(turn, values)
        if not result.success:
            return []

        rel = projection.relationships.get(pair_key(a, b))
        events: list[EventBase] = []
        for change in result.data.changes:
            holder = find_matching_character_key(change.from_character, [a, b])
            target = find_matching_character_key(change.toward_character, [a, b])
            if holder is None or target is None or holder == target:
                continue
            attitude = rel.attitudes.get(holder) if rel else None
            current = {f.lower() for f in attitude.feelings} if attitude else set()
            secrets = {s.lower() for s in attitude.secrets} if attitude else set()
            wants = {w.lower() for w in attitude.wants} if attitude else set()
            src = turn.source
            for value in change.feelings_added:
                if value.lower() not in current:
                    events.append(FeelingAddedEvent(
                        source=src, from_character=holder, toward_character=target, value=value,
                    ))
            for value in change.feelings_removed:
                if value.lower() in current:
                    events.append(FeelingRemovedEvent(
                        source=src, from_character=holder, toward_character=target, value=value,
                    ))
            events += [
                SecretAddedEvent(source=src, from_character=holder, toward_character=target, value=v)
                for v in change.secrets_added if v.lower() not in secrets
            ]
            events += [
                WantAddedEvent(source=src, from_character=holder, toward_character=target, value=v)
                for v in change.wants_added if v.lower() not in wants
            ]
        return events


# ── Status ───────────────────────────────────────────────


class StatusChange(BaseModel):
    reasoning: str = ""
    changed: bool = False
    status: str = ""


STATUS_PROMPT = PromptTemplate(
    name="status_change",
    description="Whether the overall status of a relationship changed",
    system_prompt=f"""You track the overall status of a relationship between two characters.
Statuses: {", ".join(RELATIONSHIP_STATUSES)}.

Return strict JSON:
{{"reasoning": "...", "changed": true/false, "status": "..."}}""",
    user_template="""Pair: {{{pair_a}}} and {{{pair_b}}}

Current relationship:
{{{relationship}}}

Messages:
{{{messages}}}

Return JSON only.""",
    default_temperature=0.4,
    response_model=StatusChange,
)


class StatusChangeExtractor(PerPairExtractor):
    name = "status_change"
    display_name = "relationship status"
    category = "relationships"
    prompt = STATUS_PROMPT
    default_temperature = 0.4
    run_strategy = EveryNMessages(n=2, offset=1)
    message_strategy = FixedNumber(n=4)

    async def run(self, turn: TurnContext, pair: tuple[str, str]) -> list[EventBase]:
        projection = turn.projection()
        a, b = pair
        values = self.prompt_values(turn, projection)
        values.update(pair_a=a, pair_b=b, relationship=format_relationship(projection, a, b))
        result = await self.generate(turn, values)
        if not result.success:
            return []
        data: StatusChange = result.data
        status = data.status.strip().lower()
        if not data.changed or status not in RELATIONSHIP_STATUSES:
            return []
        rel = projection.relationships.get(pair_key(a, b))
        previous = rel.status if rel else "strangers"
        if status == previous:
            return []
        return [StatusChangedEvent(
            source=turn.source, pair=(a, b), new_status=status, previous_status=previous,
        )]
