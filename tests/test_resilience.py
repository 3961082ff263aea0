"""Tests for the prompt result cache and per-prompt backoff."""

from blaze_tracker.resilience import PromptBackoff, PromptResultCache
from blaze_tracker.settings import BackoffConfig


# ── PromptResultCache ────────────────────────────────────


class TestPromptResultCache:
    def test_miss_then_hit(self) -> None:
        cache = PromptResultCache(clock=lambda: 1000)
        key, entry = cache.lookup("time_change", "sys", "user", 0.3, "p1")
        assert entry is None
        cache.store(key, {"changed": False}, "none", "{}")
        _, entry = cache.lookup("time_change", "sys", "user", 0.3, "p1")
        assert entry.data == {"changed": False}
        assert entry.reasoning == "none"
        assert cache.hits == 1

    def test_key_varies_with_every_part(self) -> None:
        base = PromptResultCache.make_key("n", "s", "u", 0.5, "p")
        assert PromptResultCache.make_key("m", "s", "u", 0.5, "p") != base
        assert PromptResultCache.make_key("n", "S", "u", 0.5, "p") != base
        assert PromptResultCache.make_key("n", "s", "U", 0.5, "p") != base
        assert PromptResultCache.make_key("n", "s", "u", 0.6, "p") != base
        assert PromptResultCache.make_key("n", "s", "u", 0.5, "q") != base

    def test_int_and_float_temperature_share_key(self) -> None:
        assert PromptResultCache.make_key("n", "s", "u", 1, "p") == \
            PromptResultCache.make_key("n", "s", "u", 1.0, "p")

    def test_entries_expire(self) -> None:
        now = [0]
        cache = PromptResultCache(max_age_ms=1000, clock=lambda: now[0])
        key, _ = cache.lookup("n", "s", "u", 0.5, "")
        cache.store(key, "data")
        now[0] = 1001
        _, entry = cache.lookup("n", "s", "u", 0.5, "")
        assert entry is None
        assert len(cache) == 0

    def test_oldest_entries_evicted_over_capacity(self) -> None:
        now = [0]
        cache = PromptResultCache(max_entries=2, clock=lambda: now[0])
        for i in range(3):
            now[0] = i
            key, _ = cache.lookup(f"n{i}", "s", "u", 0.5, "")
            cache.store(key, i)
        assert len(cache) == 2
        _, first = cache.lookup("n0", "s", "u", 0.5, "")
        _, last = cache.lookup("n2", "s", "u", 0.5, "")
        assert first is None
        assert last.data == 2

    def test_clear(self) -> None:
        cache = PromptResultCache()
        key, _ = cache.lookup("n", "s", "u", 0.5, "")
        cache.store(key, 1)
        cache.lookup("n", "s", "u", 0.5, "")
        cache.clear()
        assert len(cache) == 0
        assert cache.hits == 0


# ── PromptBackoff ────────────────────────────────────────


CONFIG = BackoffConfig(failure_threshold=2, base_cooldown_ms=1000, max_cooldown_ms=3000)


class TestPromptBackoff:
    def test_unconfigured_prompt_never_skipped(self) -> None:
        backoff = PromptBackoff({}, clock=lambda: 0)
        for _ in range(10):
            backoff.record_failure("other")
        assert not backoff.should_skip("other").skip

    def test_cooldown_starts_at_threshold(self) -> None:
        backoff = PromptBackoff({"topic": CONFIG}, clock=lambda: 0)
        backoff.record_failure("topic")
        assert not backoff.should_skip("topic").skip
        backoff.record_failure("topic")
        decision = backoff.should_skip("topic", now=400)
        assert decision.skip
        assert decision.remaining_ms == 600

    def test_cooldown_doubles_and_caps(self) -> None:
        backoff = PromptBackoff({"topic": CONFIG}, clock=lambda: 0)
        for _ in range(3):
            backoff.record_failure("topic")
        assert backoff.state("topic").cooldown_until == 2000
        for _ in range(3):
            backoff.record_failure("topic")
        assert backoff.state("topic").cooldown_until == 3000

    def test_cooldown_expires(self) -> None:
        backoff = PromptBackoff({"topic": CONFIG}, clock=lambda: 0)
        backoff.record_failure("topic")
        backoff.record_failure("topic")
        assert not backoff.should_skip("topic", now=1000).skip

    def test_success_resets(self) -> None:
        backoff = PromptBackoff({"topic": CONFIG}, clock=lambda: 0)
        backoff.record_failure("topic")
        backoff.record_failure("topic")
        backoff.record_success("topic")
        assert not backoff.should_skip("topic").skip
        assert backoff.state("topic").consecutive_failures == 0

    def test_reset_clears_all_state(self) -> None:
        backoff = PromptBackoff({"topic": CONFIG}, clock=lambda: 0)
        backoff.record_failure("topic")
        backoff.record_failure("topic")
        backoff.reset()
        assert not backoff.should_skip("topic").skip
