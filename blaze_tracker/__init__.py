"""blaze-tracker — incremental narrative state extraction for chat roleplay."""

from blaze_tracker.events import Event, EventBase
from blaze_tracker.models import MessageAndSwipe, NarrativeState, Snapshot, SwipeContext
from blaze_tracker.orchestrator import ExtractionOrchestrator, ExtractionResult
from blaze_tracker.settings import ExtractionSettings
from blaze_tracker.store import EventStore

__all__ = [
    "Event",
    "EventBase",
    "EventStore",
    "ExtractionOrchestrator",
    "ExtractionResult",
    "ExtractionSettings",
    "MessageAndSwipe",
    "NarrativeState",
    "Snapshot",
    "SwipeContext",
]

__version__ = "0.1.0"
