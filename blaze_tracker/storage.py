"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM — reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      settings.json           ← ExtractionSettings (see blaze_tracker.settings)
      chats/
        {chat_id}/
          messages.json       ← chat transcript (list of ChatMessage)
          context.json        ← user/character names and description
          events.json         ← committed event log
          snapshots.json      ← initial snapshot + checkpoints
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from blaze_tracker.events import EventListAdapter
from blaze_tracker.models import ChatMessage, ExtractionContext, Snapshot
from blaze_tracker.store import EventStore

logger = logging.getLogger(__name__)


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._chat_root = base_path / "chats"
        self._chat_root.mkdir(parents=True, exist_ok=True)

    @property
    def settings_path(self) -> Path:
        return self._base / "settings.json"

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _chat_dir(self, chat_id: str) -> Path:
        return self._chat_root / chat_id

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def list_chats(self) -> list[str]:
        return sorted(p.name for p in self._chat_root.iterdir() if p.is_dir())

    def get_messages(self, chat_id: str) -> list[ChatMessage]:
        path = self._chat_dir(chat_id) / "messages.json"
        if not path.exists():
            return []
        return [ChatMessage.model_validate(m) for m in self._read_json(path)]

    def append_messages(self, chat_id: str, messages: list[ChatMessage]) -> None:
        existing = self.get_messages(chat_id)
        existing.extend(messages)
        self._write_json(
            self._chat_dir(chat_id) / "messages.json",
            [m.model_dump() for m in existing],
        )

    def get_context(self, chat_id: str) -> ExtractionContext:
        """Transcript plus the names stored alongside it."""
        path = self._chat_dir(chat_id) / "context.json"
        meta = self._read_json(path) if path.exists() else {}
        return ExtractionContext(chat=self.get_messages(chat_id), **meta)

    def save_context(self, chat_id: str, context: ExtractionContext) -> None:
        self._write_json(
            self._chat_dir(chat_id) / "context.json",
            context.model_dump(exclude={"chat"}),
        )

    # ------------------------------------------------------------------
    # Event store
    # ------------------------------------------------------------------

    def load_store(self, chat_id: str) -> EventStore:
        chat_dir = self._chat_dir(chat_id)
        events_path = chat_dir / "events.json"
        snapshots_path = chat_dir / "snapshots.json"

        snapshots = []
        if snapshots_path.exists():
            snapshots = [Snapshot.model_validate(s) for s in self._read_json(snapshots_path)]
        events = []
        if events_path.exists():
            events = EventListAdapter.validate_python(self._read_json(events_path))

        initial = next((s for s in snapshots if s.kind == "initial"), None)
        checkpoints = [s for s in snapshots if s.kind != "initial"]
        logger.debug("loaded chat %s: %d events, %d snapshots", chat_id, len(events), len(snapshots))
        return EventStore(initial_snapshot=initial, events=events, checkpoints=checkpoints)

    def save_store(self, chat_id: str, store: EventStore) -> None:
        data = store.to_dict()
        chat_dir = self._chat_dir(chat_id)
        self._write_json(chat_dir / "events.json", data["events"])
        self._write_json(chat_dir / "snapshots.json", data["snapshots"])
