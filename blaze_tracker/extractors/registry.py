"""Extractor phases and the per-phase registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from blaze_tracker.extractors.base import (
    Extractor,
    GlobalExtractor,
    PerCharacterExtractor,
    PerPairExtractor,
)


class Phase(str, Enum):
    """Turn phases, in execution order.

    Per-character extractors see presence changes from this turn, and the
    props phase sees this turn's outfit changes.
    """

    CORE = "core"
    CHARACTER_PRESENCE = "characterPresence"
    PER_CHARACTER = "perCharacter"
    PROPS = "props"
    RELATIONSHIP_SUBJECTS = "relationshipSubjects"
    PER_PAIR = "perPair"
    NARRATIVE = "narrative"
    CHAPTER = "chapter"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)

PHASE_LABELS: dict[Phase, str] = {
    Phase.CORE: "Extracting core state...",
    Phase.CHARACTER_PRESENCE: "Detecting character presence...",
    Phase.PER_CHARACTER: "Extracting character states...",
    Phase.PROPS: "Extracting props changes...",
    Phase.RELATIONSHIP_SUBJECTS: "Extracting relationship subjects...",
    Phase.PER_PAIR: "Extracting relationship details...",
    Phase.NARRATIVE: "Extracting narrative...",
    Phase.CHAPTER: "Checking chapter boundaries...",
}

_PER_TARGET_PHASES = {
    Phase.PER_CHARACTER: PerCharacterExtractor,
    Phase.PER_PAIR: PerPairExtractor,
}


@dataclass
class ExtractorSet:
    """Extractors by phase, each list in registration order."""

    phases: dict[Phase, list[Extractor]] = field(
        default_factory=lambda: {phase: [] for phase in Phase}
    )

    def register(self, phase: Phase, extractor: Extractor) -> ExtractorSet:
        expected = _PER_TARGET_PHASES.get(phase, GlobalExtractor)
        if not isinstance(extractor, expected):
            raise TypeError(
                f"{type(extractor).__name__} cannot run in phase {phase.value}; "
                f"expected a {expected.__name__}"
            )
        self.phases.setdefault(phase, []).append(extractor)
        return self

    def get(self, phase: Phase) -> list[Extractor]:
        return self.phases.get(phase, [])

    def __iter__(self):
        for phase in PHASE_ORDER:
            yield from self.get(phase)
