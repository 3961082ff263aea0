"""Extraction orchestrator — runs every registered extractor once per turn.

Turn flow:
  1. Phases in fixed order: core → characterPresence → perCharacter → props
     → relationshipSubjects → perPair → narrative → chapter.
     Global extractors run once and see the growing turn_events list.
     Per-character / per-pair extractors fan out over the present
     characters (or their unique sorted pairs):
       - batch capable and ≥ 2 targets → one batched call, falling back to
         one call per target when it fails;
       - max_concurrent_requests ≤ 1   → targets one by one;
       - otherwise                     → bounded worker pool, results in
                                         target order.
  2. Name resolution rewrites character references to canonical names.
  3. All of the turn's events are appended to the store in one call.

Cancellation is checked before every phase and every fan-out unit. An
aborted turn appends nothing.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from blaze_tracker.events import ChapterEndedEvent, EventBase, event_tag
from blaze_tracker.extractors import (
    PHASE_ORDER,
    BatchExtractionError,
    Extractor,
    ExtractorSet,
    GlobalExtractor,
    PerCharacterExtractor,
    PerPairExtractor,
    Phase,
    TurnContext,
    default_extractors,
)
from blaze_tracker.extractors.registry import PHASE_LABELS
from blaze_tracker.llm import Generator
from blaze_tracker.models import ExtractionContext, MessageAndSwipe, SwipeContext, sort_pair
from blaze_tracker.parse import ExtractionRuntime
from blaze_tracker.pool import map_bounded
from blaze_tracker.progress import ExtractionProgress, StatusCallback
from blaze_tracker.resilience import PromptBackoff, PromptResultCache
from blaze_tracker.resolution import NameDisambiguator, NameResolver
from blaze_tracker.settings import ExtractionSettings, SettingsProvider, StaticSettings
from blaze_tracker.store import EventStore
from blaze_tracker.strategies import ExtractorStates, RunStrategyContext

logger = logging.getLogger(__name__)

Target = str | tuple[str, str]


@dataclass
class ExtractorFailure:
    extractor: str  # "name" or "name:target", pairs as "A/B"
    error: BaseException


@dataclass
class ExtractionResult:
    new_events: list[EventBase] = field(default_factory=list)
    chapter_ended: bool = False
    errors: list[ExtractorFailure] = field(default_factory=list)
    aborted: bool = False


def build_unique_sorted_pairs(characters: list[str]) -> list[tuple[str, str]]:
    """Every unordered pair of distinct names, sorted, without duplicates."""
    seen: set[tuple[str, str]] = set()
    pairs: list[tuple[str, str]] = []
    for i, a in enumerate(characters):
        for b in characters[i + 1:]:
            if a == b:
                continue
            pair = sort_pair(a, b)
            if pair in seen:
                continue
            seen.add(pair)
            pairs.append(pair)
    return pairs


def _target_label(target: Target) -> str:
    return "/".join(target) if isinstance(target, tuple) else target


class BatchFanOut:
    """Two-stage fan-out for batch-capable per-character extractors.

    try_batch() makes the single batched call; fallback_per_target() runs
    the ordinary per-target path and is used only when try_batch() fails.
    """

    def __init__(
        self,
        extractor: PerCharacterExtractor,
        turn: TurnContext,
        targets: list[str],
        per_target: Callable[[], Awaitable[bool]],
    ) -> None:
        self.extractor = extractor
        self.turn = turn
        self.targets = targets
        self._per_target = per_target

    async def try_batch(self) -> list[EventBase]:
        return await self.extractor.run_batch(self.turn, self.targets)

    async def fallback_per_target(self) -> bool:
        """Returns True when the turn was aborted during the fallback."""
        return await self._per_target()

    async def run(self, errors: list[ExtractorFailure]) -> bool:
        try:
            events = await self.try_batch()
        except BatchExtractionError as e:
            logger.warning("%s batch failed, falling back to per-target calls: %s",
                           self.extractor.name, e)
            return await self.fallback_per_target()
        except Exception as e:
            logger.exception("%s:batch failed", self.extractor.name)
            errors.append(ExtractorFailure(f"{self.extractor.name}:batch", e))
            return await self.fallback_per_target()
        self.turn.turn_events.extend(events)
        return self.turn.aborted


class ExtractionOrchestrator:
    """Runs one extraction turn at a time against a single chat's store.

    Owns the per-extractor run history, the prompt result cache, prompt
    backoff and the name-resolution session; reset() clears all of them.
    """

    def __init__(
        self,
        generator: Generator,
        store: EventStore,
        settings: SettingsProvider | ExtractionSettings | None = None,
        disambiguator: NameDisambiguator | None = None,
        extractors: ExtractorSet | None = None,
    ) -> None:
        if settings is None or isinstance(settings, ExtractionSettings):
            settings = StaticSettings(settings)
        self.generator = generator
        self.store = store
        self.settings_provider = settings
        self.extractors = extractors if extractors is not None else default_extractors()
        self.states = ExtractorStates()
        self.runtime = ExtractionRuntime(
            cache=PromptResultCache(),
            backoff=PromptBackoff(),
            progress=ExtractionProgress(),
        )
        self.resolver = NameResolver(disambiguator)

    @property
    def progress(self) -> ExtractionProgress:
        return self.runtime.progress

    def reset(self) -> None:
        self.states.reset()
        self.runtime.reset()
        self.resolver.reset()

    def _configure_runtime(self, settings: ExtractionSettings) -> None:
        self.runtime.backoff.configs = dict(settings.prompt_backoff)
        self.runtime.cache.max_entries = settings.cache_max_entries
        self.runtime.cache.max_age_ms = settings.cache_max_age_ms

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def extract_events(
        self,
        context: ExtractionContext,
        current_message: MessageAndSwipe | int,
        abort: asyncio.Event | None = None,
        on_status: StatusCallback | None = None,
    ) -> ExtractionResult:
        settings = self.settings_provider.get_settings()
        self._configure_runtime(settings)
        swipe_context = SwipeContext.from_chat(context.chat)
        if isinstance(current_message, int):
            current_message = MessageAndSwipe(
                message_id=current_message,
                swipe_id=swipe_context.active_swipe(current_message),
            )

        self.progress.reset()
        self.progress.on_status = on_status
        turn = TurnContext(
            generator=self.generator,
            context=context,
            settings=settings,
            store=self.store,
            source=current_message,
            swipe_context=swipe_context,
            turn_events=[],
            runtime=self.runtime,
            abort=abort,
        )
        errors: list[ExtractorFailure] = []

        def aborted_result() -> ExtractionResult:
            logger.info("extraction aborted at message %d, nothing committed",
                        current_message.message_id)
            return ExtractionResult(errors=errors, aborted=True)

        for phase in PHASE_ORDER:
            if turn.aborted:
                return aborted_result()
            self.progress.start_section(phase.value, PHASE_LABELS[phase])
            was_aborted = await self._run_phase(phase, turn, errors)
            self.progress.complete_section(phase.value)
            if was_aborted or turn.aborted:
                return aborted_result()

        chapter_ended = any(isinstance(e, ChapterEndedEvent) for e in turn.turn_events)

        events = await self.resolver.resolve_turn(
            turn.turn_events, turn.committed_projection(), current_message,
        )
        if turn.aborted:
            return aborted_result()

        counts = Counter(event_tag(e) for e in events)
        logger.debug(
            "%d events extracted for msg %d swipe %d: %s",
            len(events), current_message.message_id, current_message.swipe_id, dict(counts),
        )
        self.store.append_events(events)
        return ExtractionResult(new_events=events, chapter_ended=chapter_ended, errors=errors)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_phase(
        self, phase: Phase, turn: TurnContext, errors: list[ExtractorFailure],
    ) -> bool:
        for extractor in self.extractors.get(phase):
            if isinstance(extractor, PerCharacterExtractor):
                was_aborted = await self._run_per_character(extractor, turn, errors)
            elif isinstance(extractor, PerPairExtractor):
                was_aborted = await self._run_per_pair(extractor, turn, errors)
            elif isinstance(extractor, GlobalExtractor):
                await self._run_global(extractor, turn, errors)
                was_aborted = turn.aborted
            else:
                raise TypeError(f"Unknown extractor type: {type(extractor).__name__}")
            if was_aborted:
                return True
        return False

    def _strategy_context(self, extractor: Extractor, turn: TurnContext) -> RunStrategyContext:
        return RunStrategyContext(
            current_message=turn.current_message,
            state=self.states.get(extractor.name),
            settings=turn.settings,
            turn_events=turn.turn_events,
        )

    def _should_run(self, extractor: Extractor, turn: TurnContext) -> bool:
        if extractor.should_run(self._strategy_context(extractor, turn)):
            return True
        self.progress.record_skipped(extractor.name, "should_run=false")
        return False

    def _record_run(self, extractor: Extractor, turn: TurnContext, produced: int) -> None:
        self.states.get(extractor.name).record(turn.current_message, produced > 0)
        logger.debug("%s produced %d events", extractor.name, produced)

    async def _run_global(
        self, extractor: GlobalExtractor, turn: TurnContext, errors: list[ExtractorFailure],
    ) -> None:
        if not self._should_run(extractor, turn):
            return
        self.progress.set_label(f"Extracting {extractor.display_name}...")
        try:
            events = await extractor.run(turn)
        except Exception as e:
            logger.exception("%s failed", extractor.name)
            errors.append(ExtractorFailure(extractor.name, e))
            return
        self._record_run(extractor, turn, len(events))
        turn.turn_events.extend(events)

    async def _run_per_character(
        self, extractor: PerCharacterExtractor, turn: TurnContext, errors: list[ExtractorFailure],
    ) -> bool:
        characters = list(turn.projection().characters_present)
        if not characters or not self._should_run(extractor, turn):
            return turn.aborted

        before = len(turn.turn_events)

        async def per_target() -> bool:
            return await self._fan_out(extractor, turn, characters, errors)

        if extractor.supports_batch(turn.settings) and len(characters) > 1:
            self.progress.set_label(
                f"Extracting {extractor.display_name} for {len(characters)} characters..."
            )
            was_aborted = await BatchFanOut(extractor, turn, characters, per_target).run(errors)
        else:
            was_aborted = await per_target()

        self._record_run(extractor, turn, len(turn.turn_events) - before)
        return was_aborted or turn.aborted

    async def _run_per_pair(
        self, extractor: PerPairExtractor, turn: TurnContext, errors: list[ExtractorFailure],
    ) -> bool:
        pairs = build_unique_sorted_pairs(list(turn.projection().characters_present))
        if not pairs or not self._should_run(extractor, turn):
            return turn.aborted
        before = len(turn.turn_events)
        was_aborted = await self._fan_out(extractor, turn, pairs, errors)
        self._record_run(extractor, turn, len(turn.turn_events) - before)
        return was_aborted or turn.aborted

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def _label(self, extractor: Extractor, target: Target) -> str:
        if isinstance(target, tuple):
            return f"Extracting {extractor.display_name} for {target[0]} & {target[1]}..."
        return f"Extracting {extractor.display_name} for {target}..."

    async def _fan_out(
        self,
        extractor: PerCharacterExtractor | PerPairExtractor,
        turn: TurnContext,
        targets: list,
        errors: list[ExtractorFailure],
    ) -> bool:
        """One call per target; returns True when the turn was aborted."""
        max_concurrent = max(1, turn.settings.max_concurrent_requests)

        if max_concurrent <= 1:
            for target in targets:
                if turn.aborted:
                    return True
                self.progress.set_label(self._label(extractor, target))
                try:
                    events = await extractor.run(turn, target)
                except Exception as e:
                    qualified = f"{extractor.name}:{_target_label(target)}"
                    logger.exception("%s failed", qualified)
                    errors.append(ExtractorFailure(qualified, e))
                    continue
                turn.turn_events.extend(events)
            return turn.aborted

        # Concurrent units all read the turn as it was before the fan-out.
        snapshot = turn.frozen()

        async def unit(target, index: int) -> tuple[list[EventBase], BaseException | None]:
            if snapshot.aborted:
                return [], None
            self.progress.set_label(self._label(extractor, target))
            try:
                return await extractor.run(snapshot, target), None
            except Exception as e:
                return [], e

        results = await map_bounded(targets, max_concurrent, unit)
        for target, (events, error) in zip(targets, results):
            if error is not None:
                qualified = f"{extractor.name}:{_target_label(target)}"
                logger.error("%s failed: %s", qualified, error, exc_info=error)
                errors.append(ExtractorFailure(qualified, error))
                continue
            turn.turn_events.extend(events)
        return turn.aborted
