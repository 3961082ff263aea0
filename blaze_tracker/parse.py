"""Generate-and-parse with bounded retries, result cache and backoff.

    generate_and_parse(generator, template, built, temperature, runtime=..., settings=...)

Order of checks:
  1. abort already set → aborted result, no generator call.
  2. result cache hit → cached data, no generator call.
  3. prompt in cooldown → failure with cooldown=True, no generator call.
  4. up to max_retries + 1 attempts; attempt 0 at the caller's temperature,
     later attempts at the retry temperature.
  5. all attempts failed → failure is recorded against the prompt's backoff.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from blaze_tracker.llm import Generator, GeneratorAbortError, build_generator_prompt
from blaze_tracker.progress import ExtractionProgress
from blaze_tracker.prompts import BuiltPrompt, PromptTemplate, extract_reasoning
from blaze_tracker.resilience import PromptBackoff, PromptResultCache
from blaze_tracker.settings import ExtractionSettings

logger = logging.getLogger(__name__)

_LAST_RESPONSE_LOG_CHARS = 500


@dataclass
class ExtractionRuntime:
    """Operational state shared by every call in one orchestrator."""

    cache: PromptResultCache = field(default_factory=PromptResultCache)
    backoff: PromptBackoff = field(default_factory=PromptBackoff)
    progress: ExtractionProgress = field(default_factory=ExtractionProgress)

    def reset(self) -> None:
        self.cache.clear()
        self.backoff.reset()
        self.progress.reset()
        self.progress.clear_counters()


@dataclass
class ParseResult:
    success: bool
    data: Any = None
    reasoning: str | None = None
    raw_response: str | None = None
    error: str | None = None
    aborted: bool = False
    cooldown: bool = False


def _aborted(abort: asyncio.Event | None) -> bool:
    return abort is not None and abort.is_set()


async def generate_and_parse(
    generator: Generator,
    template: PromptTemplate,
    built: BuiltPrompt,
    temperature: float,
    *,
    runtime: ExtractionRuntime,
    settings: ExtractionSettings,
    abort: asyncio.Event | None = None,
    max_retries: int | None = None,
    retry_temperature: float | None = None,
) -> ParseResult:
    """Call the generator until the template parses its reply, or give up."""
    if _aborted(abort):
        return ParseResult(success=False, aborted=True)

    max_retries = settings.max_retries if max_retries is None else max_retries
    retry_temperature = (
        settings.retry_temperature if retry_temperature is None else retry_temperature
    )
    name = template.name
    progress = runtime.progress

    cache_key = ""
    if settings.prompt_cache_enabled:
        cache_key, cached = runtime.cache.lookup(
            name, built.system, built.user, temperature, settings.profile_id,
        )
        if cached is not None:
            progress.record_skipped(name, "prompt-cache-hit")
            return ParseResult(
                success=True,
                data=cached.data,
                reasoning=cached.reasoning,
                raw_response=cached.raw_response,
            )

    decision = runtime.backoff.should_skip(name)
    if decision.skip:
        progress.record_skipped(name, f"prompt-cooldown:{decision.remaining_ms}ms")
        logger.warning(
            "%s skipped, cooldown active (%ds remaining)",
            name, -(-decision.remaining_ms // 1000),
        )
        return ParseResult(
            success=False,
            error=f"cooldown active ({decision.remaining_ms}ms remaining)",
            cooldown=True,
        )

    prompt = build_generator_prompt(built.system, built.user, name)
    last_error: str | None = None
    last_response: str | None = None

    for attempt in range(max_retries + 1):
        current_temperature = temperature if attempt == 0 else retry_temperature
        progress.record_llm_attempt(name, attempt > 0)

        try:
            response = await generator.generate(
                prompt,
                temperature=current_temperature,
                max_tokens=settings.max_tokens,
                abort=abort,
            )
        except GeneratorAbortError:
            return ParseResult(success=False, aborted=True)
        except Exception as e:
            if _aborted(abort):
                return ParseResult(success=False, aborted=True)
            last_error = str(e) or type(e).__name__
        else:
            last_response = response
            parsed = template.parse_response(response)
            if parsed is not None:
                reasoning = extract_reasoning(parsed)
                progress.record_llm_result(name, True)
                runtime.backoff.record_success(name)
                if cache_key:
                    runtime.cache.store(cache_key, parsed, reasoning, response)
                if reasoning:
                    logger.debug("%s reasoning: %s", name, reasoning)
                return ParseResult(
                    success=True, data=parsed, reasoning=reasoning, raw_response=response,
                )
            last_error = "parse_response returned None"

        if _aborted(abort):
            return ParseResult(success=False, aborted=True)

        if attempt < max_retries:
            logger.warning(
                "%s parse failed (attempt %d/%d): %s",
                name, attempt + 1, max_retries + 1, last_error,
            )

    logger.error("%s failed after %d attempts: %s", name, max_retries + 1, last_error)
    progress.record_llm_result(name, False)
    runtime.backoff.record_failure(name)
    if last_response:
        logger.error("Last response: %s", last_response[:_LAST_RESPONSE_LOG_CHARS])

    return ParseResult(success=False, error=last_error, raw_response=last_response)
