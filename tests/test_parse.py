"""Tests for generate_and_parse — retries, cache, backoff, abort."""

import asyncio

import pytest
from pydantic import BaseModel

from blaze_tracker.llm import GeneratorAbortError, GeneratorError
from blaze_tracker.parse import ExtractionRuntime, generate_and_parse
from blaze_tracker.prompts import BuiltPrompt, PromptTemplate
from blaze_tracker.resilience import PromptBackoff
from blaze_tracker.settings import BackoffConfig, ExtractionSettings


class _Change(BaseModel):
    reasoning: str = ""
    changed: bool


TEMPLATE = PromptTemplate(
    name="demo", system_prompt="sys", user_template="user", response_model=_Change,
)
BUILT = BuiltPrompt(system="sys", user="user")
GOOD = '{"reasoning": "it moved", "changed": true}'


@pytest.fixture
def runtime() -> ExtractionRuntime:
    return ExtractionRuntime()


async def _run(generator, runtime, settings, **kwargs):
    return await generate_and_parse(
        generator, TEMPLATE, BUILT, 0.7, runtime=runtime, settings=settings, **kwargs,
    )


class TestRetries:
    async def test_success_first_try(self, generator, runtime, settings) -> None:
        generator.respond("demo", GOOD)
        result = await _run(generator, runtime, settings)
        assert result.success
        assert result.data.changed is True
        assert result.reasoning == "it moved"
        assert result.raw_response == GOOD
        assert generator.temperatures == [0.7]

    async def test_retry_uses_retry_temperature(self, generator, runtime, settings) -> None:
        generator.respond("demo", "garbage", GOOD)
        result = await _run(generator, runtime, settings)
        assert result.success
        assert generator.temperatures == [0.7, 0.1]
        assert runtime.progress.retries["demo"] == 1

    async def test_generator_error_is_retried(self, generator, runtime, settings) -> None:
        generator.respond("demo", GeneratorError("backend down"), GOOD)
        result = await _run(generator, runtime, settings)
        assert result.success
        assert generator.count("demo") == 2

    async def test_gives_up_after_max_retries(self, generator, runtime, settings) -> None:
        generator.respond("demo", "garbage")
        result = await _run(generator, runtime, settings, max_retries=1)
        assert not result.success
        assert not result.aborted
        assert result.error == "parse_response returned None"
        assert result.raw_response == "garbage"
        assert generator.count("demo") == 2
        assert runtime.progress.failures["demo"] == 1

    async def test_exception_message_kept_as_error(self, generator, runtime, settings) -> None:
        generator.respond("demo", GeneratorError("backend down"))
        result = await _run(generator, runtime, settings, max_retries=0)
        assert result.error == "backend down"
        assert result.raw_response is None

    async def test_settings_control_retry_count(self, generator, runtime) -> None:
        generator.respond("demo", "garbage")
        await _run(generator, runtime, ExtractionSettings(max_retries=3))
        assert generator.count("demo") == 4


class TestAbort:
    async def test_abort_before_start(self, generator, runtime, settings) -> None:
        abort = asyncio.Event()
        abort.set()
        result = await _run(generator, runtime, settings, abort=abort)
        assert result.aborted
        assert generator.calls == []

    async def test_generator_abort_error(self, generator, runtime, settings) -> None:
        generator.respond("demo", GeneratorAbortError("stop"))
        result = await _run(generator, runtime, settings)
        assert result.aborted
        assert generator.count("demo") == 1

    async def test_abort_set_during_call_stops_retries(self, generator, runtime, settings) -> None:
        abort = asyncio.Event()

        def answer(prompt):
            abort.set()
            return "garbage"

        generator.respond("demo", answer)
        result = await _run(generator, runtime, settings, abort=abort)
        assert result.aborted
        assert generator.count("demo") == 1


class TestCache:
    async def test_second_identical_call_is_cached(self, generator, runtime, settings) -> None:
        generator.respond("demo", GOOD)
        await _run(generator, runtime, settings)
        result = await _run(generator, runtime, settings)
        assert result.success
        assert result.data.changed is True
        assert generator.count("demo") == 1
        assert runtime.progress.skipped_for("demo") == ["prompt-cache-hit"]

    async def test_different_temperature_misses(self, generator, runtime, settings) -> None:
        generator.respond("demo", GOOD)
        await _run(generator, runtime, settings)
        await generate_and_parse(
            generator, TEMPLATE, BUILT, 0.2, runtime=runtime, settings=settings,
        )
        assert generator.count("demo") == 2

    async def test_failures_are_not_cached(self, generator, runtime, settings) -> None:
        generator.respond("demo", "garbage", GOOD)
        await _run(generator, runtime, settings, max_retries=0)
        result = await _run(generator, runtime, settings, max_retries=0)
        assert result.success
        assert generator.count("demo") == 2

    async def test_cache_disabled(self, generator, runtime) -> None:
        settings = ExtractionSettings(prompt_cache_enabled=False)
        generator.respond("demo", GOOD)
        await _run(generator, runtime, settings)
        await _run(generator, runtime, settings)
        assert generator.count("demo") == 2
        assert len(runtime.cache) == 0


class TestBackoff:
    @pytest.fixture
    def runtime(self) -> ExtractionRuntime:
        config = BackoffConfig(failure_threshold=1, base_cooldown_ms=60_000)
        return ExtractionRuntime(backoff=PromptBackoff({"demo": config}))

    async def test_cooldown_skips_generator(self, generator, runtime, settings) -> None:
        generator.respond("demo", "garbage")
        await _run(generator, runtime, settings, max_retries=0)
        result = await _run(generator, runtime, settings, max_retries=0)
        assert not result.success
        assert result.cooldown
        assert "cooldown active" in result.error
        assert generator.count("demo") == 1
        assert runtime.progress.skipped_for("demo")[0].startswith("prompt-cooldown:")

    async def test_success_clears_failures(self, generator, runtime, settings) -> None:
        generator.respond("demo", GOOD)
        await _run(generator, runtime, settings)
        assert runtime.backoff.state("demo").consecutive_failures == 0


def test_runtime_reset_clears_everything():
    runtime = ExtractionRuntime()
    key, _ = runtime.cache.lookup("n", "s", "u", 0.5, "")
    runtime.cache.store(key, 1)
    runtime.progress.record_llm_attempt("n", retry=False)
    runtime.progress.start_section("core", "Extracting core state...")
    runtime.reset()
    assert len(runtime.cache) == 0
    assert runtime.progress.attempts == {}
    assert runtime.progress.sections_started == []
