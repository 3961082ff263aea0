"""Extraction settings (tracking toggles, limits, prompt overrides, resilience).

Settings live in a JSON file. load_settings() returns defaults merged with
the stored values; update_settings() applies partial updates — nested dicts
(track, custom_prompts, custom_temperatures, prompt_backoff) are merged
key-by-key, scalars overwritten.

The orchestrator never reads settings as ambient globals: it asks an
injected SettingsProvider once per turn.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TrackSettings(BaseModel):
    """Category toggles. An extractor never runs when its category is off."""

    time: bool = True
    location: bool = True
    props: bool = True
    characters: bool = True
    relationships: bool = True
    scene: bool = True
    narrative: bool = True
    chapters: bool = True

    def enabled(self, category: str) -> bool:
        return bool(getattr(self, category, False))


class CustomPrompt(BaseModel):
    system_prompt: str = ""
    user_template: str = ""
    temperature: float | None = None

    @property
    def overrides_template(self) -> bool:
        return bool(self.system_prompt or self.user_template)


class BackoffConfig(BaseModel):
    failure_threshold: int = 2
    base_cooldown_ms: int = 30_000
    max_cooldown_ms: int = 5 * 60_000


def _default_backoff() -> dict[str, BackoffConfig]:
    # Only prompts known to fail often participate in backoff.
    return {"topic_tone_change": BackoffConfig()}


class ExtractionSettings(BaseModel):
    profile_id: str = ""
    track: TrackSettings = Field(default_factory=TrackSettings)
    max_concurrent_requests: int = 1
    max_messages_to_send: int | None = None
    max_chapter_messages_to_send: int | None = None
    max_tokens: int = 4000
    custom_prompts: dict[str, CustomPrompt] = Field(default_factory=dict)
    custom_temperatures: dict[str, float] = Field(default_factory=dict)
    category_temperatures: dict[str, float] = Field(default_factory=dict)
    max_retries: int = 2
    retry_temperature: float = 0.1
    prompt_backoff: dict[str, BackoffConfig] = Field(default_factory=_default_backoff)
    prompt_cache_enabled: bool = True
    cache_max_entries: int = 500
    cache_max_age_ms: int = 15 * 60_000


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class SettingsProvider(Protocol):
    def get_settings(self) -> ExtractionSettings: ...


class StaticSettings:
    """Provider that always returns the same settings object."""

    def __init__(self, settings: ExtractionSettings | None = None) -> None:
        self._settings = settings or ExtractionSettings()

    def get_settings(self) -> ExtractionSettings:
        return self._settings


class FileSettings:
    """Provider that re-reads a settings file on every turn."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def get_settings(self) -> ExtractionSettings:
        return load_settings(self._path)


# ---------------------------------------------------------------------------
# File persistence
# ---------------------------------------------------------------------------

_MERGED_KEYS = ("track", "custom_prompts", "custom_temperatures",
                "category_temperatures", "prompt_backoff")


def load_settings(path: Path | None) -> ExtractionSettings:
    """Read settings, returning defaults merged with stored values."""
    if path is None or not path.is_file():
        return ExtractionSettings()
    stored = json.loads(path.read_text())
    defaults = ExtractionSettings().model_dump()
    merged = _merge(defaults, stored)
    return ExtractionSettings.model_validate(merged)


def save_settings(path: Path, settings: ExtractionSettings) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings.model_dump_json(indent=2))


def update_settings(path: Path, fields: dict[str, Any]) -> ExtractionSettings:
    """Merge fields into the stored settings and persist. Returns the result."""
    current = load_settings(path).model_dump()
    settings = ExtractionSettings.model_validate(_merge(current, fields))
    save_settings(path, settings)
    return settings


def _merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in updates.items():
        if key in _MERGED_KEYS and isinstance(value, dict):
            nested = dict(result.get(key) or {})
            nested.update(value)
            result[key] = nested
        elif key in ExtractionSettings.model_fields:
            result[key] = value
        else:
            logger.warning("Ignoring unknown setting %r", key)
    return result
