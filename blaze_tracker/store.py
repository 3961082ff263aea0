"""Event store — append-only, totally ordered event log plus snapshots.

Events are ordered by (message_id, swipe_id, insertion sequence). Nothing is
ever removed or rewritten: a swipe makes older events for that message
inactive (their swipe is no longer the active one), and projections simply
skip them.

Exactly one snapshot has kind "initial"; later "checkpoint" snapshots are
optional replay bases so projection does not start from turn zero.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from blaze_tracker.events import EventBase, EventKindFilter, EventListAdapter, matches_kind
from blaze_tracker.models import MessageAndSwipe, NarrativeState, Snapshot, SwipeContext
from blaze_tracker.projection import project

logger = logging.getLogger(__name__)


class EventStore:
    def __init__(
        self,
        initial_snapshot: Snapshot | None = None,
        events: list[EventBase] | None = None,
        checkpoints: list[Snapshot] | None = None,
    ) -> None:
        if initial_snapshot is None:
            # Sits before the first message so events at message 0 replay.
            initial_snapshot = Snapshot(
                source=MessageAndSwipe(message_id=-1), kind="initial",
            )
        self._initial = initial_snapshot.model_copy(update={"kind": "initial"})
        self._checkpoints: list[Snapshot] = list(checkpoints or [])
        self._entries: list[tuple[int, EventBase]] = []
        self._next_seq = 0
        if events:
            self.append_events(events)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append_events(self, events: list[EventBase]) -> None:
        """Append a turn's events. The only way committed state changes."""
        for event in events:
            self._entries.append((self._next_seq, event))
            self._next_seq += 1
        self._entries.sort(key=_sort_key)
        logger.debug("appended %d events (total %d)", len(events), len(self._entries))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def events(self) -> list[EventBase]:
        return [event for _, event in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def get_active_events(
        self,
        swipe_context: SwipeContext,
        up_to_message: int | None = None,
        after_message: int | None = None,
    ) -> list[EventBase]:
        """Events on active swipes, optionally bounded to (after, up_to]."""
        result = []
        for _, event in self._entries:
            mid = event.source.message_id
            if up_to_message is not None and mid > up_to_message:
                break
            if after_message is not None and mid <= after_message:
                continue
            if swipe_context.is_active(event.source):
                result.append(event)
        return result

    def last_message_of_kinds(
        self,
        filters: list[EventKindFilter],
        swipe_context: SwipeContext,
        up_to_message: int | None = None,
    ) -> int | None:
        """Message id of the most recent active event matching any filter."""
        last = None
        for event in self.get_active_events(swipe_context, up_to_message=up_to_message):
            if matches_kind(event, filters):
                last = event.source.message_id
        return last

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def initial_snapshot(self) -> Snapshot:
        return self._initial

    @property
    def snapshots(self) -> list[Snapshot]:
        return [self._initial, *self._checkpoints]

    def replace_initial_snapshot(self, snapshot: Snapshot) -> None:
        self._initial = snapshot.model_copy(update={"kind": "initial"})

    def add_snapshot(self, snapshot: Snapshot) -> None:
        self._checkpoints.append(snapshot.model_copy(update={"kind": "checkpoint"}))
        self._checkpoints.sort(key=lambda s: (s.source.message_id, s.source.swipe_id))

    def create_checkpoint(self, message_id: int, swipe_context: SwipeContext) -> Snapshot:
        state = self.project_state_at_message(message_id, swipe_context)
        snapshot = Snapshot(
            source=MessageAndSwipe(
                message_id=message_id,
                swipe_id=swipe_context.active_swipe(message_id),
            ),
            kind="checkpoint",
            state=state,
        )
        self.add_snapshot(snapshot)
        return snapshot

    def _base_snapshot(self, message_id: int, swipe_context: SwipeContext) -> Snapshot:
        base = self._initial
        for snap in self._checkpoints:
            if snap.source.message_id > message_id:
                break
            if snap.source.message_id < base.source.message_id:
                continue
            # A checkpoint taken on a swipe that is no longer shown is stale.
            if swipe_context.is_active(snap.source):
                base = snap
        return base

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def project_state_at_message(
        self, message_id: int, swipe_context: SwipeContext,
    ) -> NarrativeState:
        """Narrative state as of `message_id`. Side-effect free."""
        base = self._base_snapshot(message_id, swipe_context)
        events = self.get_active_events(
            swipe_context,
            up_to_message=message_id,
            after_message=base.source.message_id,
        )
        return project(base.state, events)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshots": [s.model_dump(mode="json") for s in self.snapshots],
            "events": EventListAdapter.dump_python(self.events, mode="json"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventStore:
        snapshots = [Snapshot.model_validate(s) for s in data.get("snapshots", [])]
        initial = next((s for s in snapshots if s.kind == "initial"), None)
        checkpoints = [s for s in snapshots if s.kind != "initial"]
        events = EventListAdapter.validate_python(data.get("events", []))
        return cls(initial_snapshot=initial, events=events, checkpoints=checkpoints)

    @classmethod
    def from_json(cls, text: str) -> EventStore:
        return cls.from_dict(json.loads(text))


def _sort_key(entry: tuple[int, EventBase]) -> tuple[int, int, int]:
    seq, event = entry
    return (event.source.message_id, event.source.swipe_id, seq)


def project_with_turn_events(
    store: EventStore,
    turn_events: list[EventBase],
    message_id: int,
    swipe_context: SwipeContext,
) -> NarrativeState:
    """Committed projection plus this turn's not-yet-committed events."""
    return project(store.project_state_at_message(message_id, swipe_context), turn_events)
