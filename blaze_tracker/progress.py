"""Extraction progress and call counters for one orchestrator."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


@dataclass
class SkipRecord:
    name: str
    reason: str


@dataclass
class ExtractionProgress:
    on_status: StatusCallback | None = None
    sections_started: list[str] = field(default_factory=list)
    sections_completed: list[str] = field(default_factory=list)
    label: str = ""
    attempts: Counter = field(default_factory=Counter)
    retries: Counter = field(default_factory=Counter)
    successes: Counter = field(default_factory=Counter)
    failures: Counter = field(default_factory=Counter)
    skipped: list[SkipRecord] = field(default_factory=list)

    def start_section(self, section: str, label: str) -> None:
        self.sections_started.append(section)
        self.set_label(label)

    def complete_section(self, section: str) -> None:
        self.sections_completed.append(section)

    def set_label(self, label: str) -> None:
        self.label = label
        if self.on_status is not None:
            self.on_status(label)

    def record_llm_attempt(self, prompt_name: str, retry: bool) -> None:
        self.attempts[prompt_name] += 1
        if retry:
            self.retries[prompt_name] += 1

    def record_llm_result(self, prompt_name: str, ok: bool) -> None:
        if ok:
            self.successes[prompt_name] += 1
        else:
            self.failures[prompt_name] += 1

    def record_skipped(self, name: str, reason: str) -> None:
        logger.debug("skipped %s (%s)", name, reason)
        self.skipped.append(SkipRecord(name, reason))

    def skipped_for(self, name: str) -> list[str]:
        return [s.reason for s in self.skipped if s.name == name]

    def reset(self) -> None:
        """Clear per-turn sections; counters survive until clear_counters()."""
        self.sections_started.clear()
        self.sections_completed.clear()
        self.label = ""

    def clear_counters(self) -> None:
        self.attempts.clear()
        self.retries.clear()
        self.successes.clear()
        self.failures.clear()
        self.skipped.clear()
