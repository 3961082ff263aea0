"""Run strategies (does an extractor fire this turn?) and message-window
strategies (how much recent chat does it see?).

Both are small frozen models; evaluate_run_strategy() and
get_message_count() are the only places that branch on them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict

from blaze_tracker.events import EventBase, EventKindFilter, matches_kind
from blaze_tracker.models import SwipeContext
from blaze_tracker.settings import ExtractionSettings
from blaze_tracker.store import EventStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-extractor memory
# ---------------------------------------------------------------------------

@dataclass
class ExtractorState:
    ran_at_messages: list[int] = field(default_factory=list)
    produced_at_messages: list[int] = field(default_factory=list)

    def record(self, message_id: int, produced: bool) -> None:
        self.ran_at_messages.append(message_id)
        if produced:
            self.produced_at_messages.append(message_id)


class ExtractorStates:
    """Registry of ExtractorState by extractor name, owned by one orchestrator."""

    def __init__(self) -> None:
        self._states: dict[str, ExtractorState] = {}

    def get(self, name: str) -> ExtractorState:
        return self._states.setdefault(name, ExtractorState())

    def __contains__(self, name: str) -> bool:
        return name in self._states

    def reset(self) -> None:
        self._states.clear()


@dataclass
class RunStrategyContext:
    current_message: int
    state: ExtractorState
    settings: ExtractionSettings
    turn_events: list[EventBase]


# ---------------------------------------------------------------------------
# Run strategies
# ---------------------------------------------------------------------------

class _Strategy(BaseModel):
    model_config = ConfigDict(frozen=True)


class EveryMessage(_Strategy):
    strategy: Literal["every_message"] = "every_message"


class EveryNMessages(_Strategy):
    strategy: Literal["every_n_messages"] = "every_n_messages"
    n: int
    offset: int = 0


class EveryNMessagesSinceLastRun(_Strategy):
    strategy: Literal["every_n_messages_since_last_run"] = "every_n_messages_since_last_run"
    n: int


class NewEventsOfKind(_Strategy):
    """Fires only when this turn already produced a matching event."""

    strategy: Literal["new_events_of_kind"] = "new_events_of_kind"
    kinds: tuple[EventKindFilter, ...]


RunStrategy = Union[EveryMessage, EveryNMessages, EveryNMessagesSinceLastRun, NewEventsOfKind]


def evaluate_run_strategy(strategy: RunStrategy, ctx: RunStrategyContext) -> bool:
    if isinstance(strategy, EveryMessage):
        return True
    if isinstance(strategy, EveryNMessages):
        return (ctx.current_message + strategy.offset + 1) % strategy.n == 0
    if isinstance(strategy, EveryNMessagesSinceLastRun):
        ran = ctx.state.ran_at_messages
        if not ran:
            return True
        return ctx.current_message - ran[-1] >= strategy.n
    if isinstance(strategy, NewEventsOfKind):
        kinds = list(strategy.kinds)
        return any(matches_kind(e, kinds) for e in ctx.turn_events)
    raise TypeError(f"Unknown run strategy: {strategy!r}")


# ---------------------------------------------------------------------------
# Message-window strategies
# ---------------------------------------------------------------------------

class FixedNumber(_Strategy):
    strategy: Literal["fixed_number"] = "fixed_number"
    n: int


class SinceLastEventOfKind(_Strategy):
    """Window starts at the latest committed event matching any kind."""

    strategy: Literal["since_last_event_of_kind"] = "since_last_event_of_kind"
    kinds: tuple[EventKindFilter, ...]


MessageStrategy = Union[FixedNumber, SinceLastEventOfKind]


def get_message_count(
    strategy: MessageStrategy,
    store: EventStore,
    current_message: int,
    swipe_context: SwipeContext,
) -> int:
    """Number of messages, ending at current_message, the extractor sees."""
    if isinstance(strategy, FixedNumber):
        return strategy.n
    if isinstance(strategy, SinceLastEventOfKind):
        last = store.last_message_of_kinds(
            list(strategy.kinds), swipe_context, up_to_message=current_message,
        )
        start = 0 if last is None else last
        return current_message - start + 1
    raise TypeError(f"Unknown message strategy: {strategy!r}")


def limit_message_range(start: int, end: int, max_messages: float) -> tuple[int, int]:
    """Shrink [start, end] to at most max_messages, keeping the newest."""
    if end - start + 1 <= max_messages:
        return start, end
    return end - int(max_messages) + 1, end


def get_max_messages(settings: ExtractionSettings, extractor_name: str) -> float:
    """Message cap for an extractor; infinity when unset."""
    if extractor_name == "chapter_description":
        limit = settings.max_chapter_messages_to_send
    else:
        limit = settings.max_messages_to_send
    return math.inf if limit is None else limit


def message_window(
    strategy: MessageStrategy,
    store: EventStore,
    current_message: int,
    swipe_context: SwipeContext,
    settings: ExtractionSettings,
    extractor_name: str,
) -> tuple[int, int]:
    """Inclusive (start, end) message range after applying the cap."""
    count = get_message_count(strategy, store, current_message, swipe_context)
    start = max(0, current_message - count + 1)
    return limit_message_range(start, current_message, get_max_messages(settings, extractor_name))
