"""Result cache and per-prompt backoff for the parse/retry layer.

Both are plain objects owned by an orchestrator instance, so tests (and a
chat switch) can start from a clean slate with reset()/clear().
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from blaze_tracker.settings import BackoffConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def _hash(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------

@dataclass
class CachedResult:
    data: Any
    reasoning: str | None = None
    raw_response: str | None = None
    cached_at: int = 0
    hits: int = 0


class PromptResultCache:
    """Successful parses keyed by prompt payload, reused while the window is unchanged."""

    def __init__(
        self,
        max_entries: int = 500,
        max_age_ms: int = 15 * 60_000,
        clock: Clock = now_ms,
    ) -> None:
        self.max_entries = max_entries
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._entries: dict[str, CachedResult] = {}
        self.hits = 0

    @staticmethod
    def make_key(
        prompt_name: str, system: str, user: str, temperature: float, profile_id: str,
    ) -> str:
        return "|".join([prompt_name, profile_id, repr(float(temperature)), _hash(system), _hash(user)])

    def __len__(self) -> int:
        return len(self._entries)

    def prune(self, now: int | None = None) -> None:
        now = self._clock() if now is None else now
        expired = [k for k, v in self._entries.items() if now - v.cached_at > self.max_age_ms]
        for key in expired:
            del self._entries[key]
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda kv: kv[1].cached_at)
            for key, _ in oldest[:overflow]:
                del self._entries[key]

    def lookup(
        self,
        prompt_name: str,
        system: str,
        user: str,
        temperature: float,
        profile_id: str,
        now: int | None = None,
    ) -> tuple[str, CachedResult | None]:
        """Return (key, entry). The key is reused by store() on a miss."""
        self.prune(now)
        key = self.make_key(prompt_name, system, user, temperature, profile_id)
        entry = self._entries.get(key)
        if entry is not None:
            entry.hits += 1
            self.hits += 1
        return key, entry

    def store(
        self,
        key: str,
        data: Any,
        reasoning: str | None = None,
        raw_response: str | None = None,
        now: int | None = None,
    ) -> None:
        now = self._clock() if now is None else now
        self._entries[key] = CachedResult(
            data=data, reasoning=reasoning, raw_response=raw_response, cached_at=now,
        )
        self.prune(now)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

@dataclass
class BackoffState:
    consecutive_failures: int = 0
    cooldown_until: int = 0


@dataclass(frozen=True)
class BackoffDecision:
    skip: bool
    remaining_ms: int = 0


class PromptBackoff:
    """Cooldown for prompts that keep failing.

    Only prompt names present in `configs` participate; every other prompt
    is never skipped.
    """

    def __init__(
        self,
        configs: dict[str, BackoffConfig] | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.configs: dict[str, BackoffConfig] = dict(configs or {})
        self._clock = clock
        self._states: dict[str, BackoffState] = {}

    def state(self, prompt_name: str) -> BackoffState:
        return self._states.setdefault(prompt_name, BackoffState())

    def should_skip(self, prompt_name: str, now: int | None = None) -> BackoffDecision:
        if prompt_name not in self.configs:
            return BackoffDecision(skip=False)
        now = self._clock() if now is None else now
        state = self.state(prompt_name)
        if state.cooldown_until > now:
            return BackoffDecision(skip=True, remaining_ms=state.cooldown_until - now)
        return BackoffDecision(skip=False)

    def record_success(self, prompt_name: str) -> None:
        if prompt_name not in self.configs:
            return
        state = self.state(prompt_name)
        state.consecutive_failures = 0
        state.cooldown_until = 0

    def record_failure(self, prompt_name: str, now: int | None = None) -> None:
        config = self.configs.get(prompt_name)
        if config is None:
            return
        now = self._clock() if now is None else now
        state = self.state(prompt_name)
        state.consecutive_failures += 1
        if state.consecutive_failures >= config.failure_threshold:
            over = max(0, state.consecutive_failures - config.failure_threshold)
            cooldown = min(config.base_cooldown_ms * 2 ** over, config.max_cooldown_ms)
            state.cooldown_until = now + cooldown
            logger.warning(
                "%s failed %d times in a row, cooling down for %dms",
                prompt_name, state.consecutive_failures, cooldown,
            )

    def reset(self) -> None:
        self._states.clear()
