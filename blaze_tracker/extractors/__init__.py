"""LLM-backed extractors and their phase registry."""

from blaze_tracker.extractors.base import (
    BatchExtractionError,
    Extractor,
    GlobalExtractor,
    PerCharacterExtractor,
    PerPairExtractor,
    TurnContext,
)
from blaze_tracker.extractors.characters import (
    MoodPhysicalChangeExtractor,
    NicknameExtractor,
    OutfitChangeExtractor,
    PositionActivityChangeExtractor,
    PresenceChangeExtractor,
)
from blaze_tracker.extractors.core import (
    LocationChangeExtractor,
    TensionChangeExtractor,
    TimeChangeExtractor,
    TopicToneChangeExtractor,
)
from blaze_tracker.extractors.narrative import (
    ChapterDescriptionExtractor,
    ChapterEndedExtractor,
    NarrativeDescriptionExtractor,
)
from blaze_tracker.extractors.props import PropsChangeExtractor
from blaze_tracker.extractors.registry import PHASE_ORDER, ExtractorSet, Phase
from blaze_tracker.extractors.relationships import (
    FeelingsChangeExtractor,
    RelationshipSubjectsExtractor,
    StatusChangeExtractor,
)


def default_extractors() -> ExtractorSet:
    """Every built-in extractor, in phase and registration order."""
    return (
        ExtractorSet()
        .register(Phase.CORE, TimeChangeExtractor())
        .register(Phase.CORE, LocationChangeExtractor())
        .register(Phase.CORE, TopicToneChangeExtractor())
        .register(Phase.CORE, TensionChangeExtractor())
        .register(Phase.CHARACTER_PRESENCE, PresenceChangeExtractor())
        .register(Phase.CHARACTER_PRESENCE, NicknameExtractor())
        .register(Phase.PER_CHARACTER, PositionActivityChangeExtractor())
        .register(Phase.PER_CHARACTER, MoodPhysicalChangeExtractor())
        .register(Phase.PER_CHARACTER, OutfitChangeExtractor())
        .register(Phase.PROPS, PropsChangeExtractor())
        .register(Phase.RELATIONSHIP_SUBJECTS, RelationshipSubjectsExtractor())
        .register(Phase.PER_PAIR, FeelingsChangeExtractor())
        .register(Phase.PER_PAIR, StatusChangeExtractor())
        .register(Phase.NARRATIVE, NarrativeDescriptionExtractor())
        .register(Phase.CHAPTER, ChapterEndedExtractor())
        .register(Phase.CHAPTER, ChapterDescriptionExtractor())
    )


__all__ = [
    "PHASE_ORDER",
    "BatchExtractionError",
    "Extractor",
    "ExtractorSet",
    "GlobalExtractor",
    "PerCharacterExtractor",
    "PerPairExtractor",
    "Phase",
    "TurnContext",
    "default_extractors",
]
