"""Generator — HTTP connection to a chat/text-completion backend.

The orchestrator and every extractor receive a Generator matching the
protocol:

    async def generate(self, prompt, *, temperature, max_tokens, abort) -> str

`prompt.name` identifies the prompt template being run (e.g.
"position_activity_change"). Implementations may use it for logging; the
simplest ignore it.

HttpGenerator is the production implementation. Tests use a stub generator
(see conftest.py) that answers per prompt name.

Cancellation: `abort` is an asyncio.Event. Setting it makes an in-flight
HttpGenerator request raise GeneratorAbortError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompt shape
# ---------------------------------------------------------------------------

class PromptMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class GeneratorPrompt(BaseModel):
    messages: list[PromptMessage]
    name: str = ""

    def as_text(self) -> str:
        """Flatten for text-completion backends."""
        return "\n\n".join(m.content for m in self.messages)


def build_generator_prompt(system: str, user: str, name: str = "") -> GeneratorPrompt:
    messages = []
    if system:
        messages.append(PromptMessage(role="system", content=system))
    messages.append(PromptMessage(role="user", content=user))
    return GeneratorPrompt(messages=messages, name=name)


# ---------------------------------------------------------------------------
# Protocol — every generator implementation must match this signature
# ---------------------------------------------------------------------------

class Generator(Protocol):
    async def generate(
        self,
        prompt: GeneratorPrompt,
        *,
        temperature: float,
        max_tokens: int,
        abort: asyncio.Event | None = None,
    ) -> str: ...


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class RateLimiter:
    """Rolling one-minute window. max_per_minute <= 0 disables limiting."""

    def __init__(self, max_per_minute: int, clock=time.monotonic) -> None:
        self._max = max_per_minute
        self._clock = clock
        self._stamps: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= 60.0:
            self._stamps.popleft()

    def delay(self) -> float:
        """Seconds until a request slot is free (0 when one is free now)."""
        if self._max <= 0:
            return 0.0
        now = self._clock()
        self._prune(now)
        if len(self._stamps) < self._max:
            return 0.0
        return 60.0 - (now - self._stamps[0])

    def record_request(self) -> None:
        if self._max > 0:
            self._stamps.append(self._clock())

    async def wait_for_slot(self, abort: asyncio.Event | None = None) -> None:
        """Wait for a free slot and reserve it before returning."""
        while (wait := self.delay()) > 0:
            if abort is not None and abort.is_set():
                raise GeneratorAbortError("Generation aborted while waiting for rate limit")
            logger.debug("rate limit reached, waiting %.1fs", wait)
            await asyncio.sleep(min(wait, 1.0))
        self.record_request()


# ---------------------------------------------------------------------------
# HttpGenerator — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpGenerator:
    """Async HTTP client for completion backends.

    Supported formats:
      "koboldcpp"  — POST /api/v1/generate  {"prompt": ..., "max_length": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     — POST /v1/chat/completions  {"model": ..., "messages": [...]}
                     Response: {"choices": [{"message": {"content": "..."}}]}

    Args:
        provider_url:        Base URL of the backend, e.g. "http://localhost:5001".
        api_key:             Bearer token, or empty string if not required.
        provider_format:     Wire format to use. Defaults to "koboldcpp".
        model:               Model identifier, used only by the openai format.
        timeout:             HTTP timeout in seconds. Defaults to 120.
        max_requests_per_minute: 0 disables rate limiting.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
        max_requests_per_minute: int = 0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._limiter = RateLimiter(max_requests_per_minute)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(
        self, prompt: GeneratorPrompt, temperature: float, max_tokens: int,
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict = {
                "messages": [m.model_dump() for m in prompt.messages],
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        return url, {
            "prompt": prompt.as_text(),
            "temperature": temperature,
            "max_length": max_tokens,
        }

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "content" not in choices[0].get("message", {}):
                raise GeneratorError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["message"]["content"]

        # koboldcpp
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise GeneratorError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def _post(self, url: str, body: dict) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise GeneratorError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise GeneratorError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise GeneratorError(f"LLM backend timed out after {self._timeout}s") from e
        return resp

    async def generate(
        self,
        prompt: GeneratorPrompt,
        *,
        temperature: float,
        max_tokens: int,
        abort: asyncio.Event | None = None,
    ) -> str:
        if abort is not None and abort.is_set():
            raise GeneratorAbortError("Generation aborted before start")
        await self._limiter.wait_for_slot(abort)

        url, body = self._build_request(prompt, temperature, max_tokens)
        logger.debug(
            "llm call prompt=%s url=%s temperature=%.2f", prompt.name, url, temperature,
        )

        request = asyncio.ensure_future(self._post(url, body))
        if abort is None:
            resp = await request
        else:
            aborted = asyncio.ensure_future(abort.wait())
            done, _ = await asyncio.wait(
                {request, aborted}, return_when=asyncio.FIRST_COMPLETED,
            )
            if request not in done:
                request.cancel()
                raise GeneratorAbortError("Generation aborted")
            aborted.cancel()
            resp = request.result()

        text = self._parse_response(resp.json())
        logger.debug("llm response prompt=%s len=%d", prompt.name, len(text))
        return text


# ---------------------------------------------------------------------------
# Errors — raised by generators for all connection and protocol failures
# ---------------------------------------------------------------------------

class GeneratorError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""


class GeneratorAbortError(GeneratorError):
    """Raised when generation is cancelled through the abort event."""
