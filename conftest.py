import asyncio
import inspect
import json
from collections.abc import Callable
from typing import Any

import pytest

from blaze_tracker.llm import GeneratorPrompt
from blaze_tracker.models import ChatMessage, ExtractionContext
from blaze_tracker.resolution import NameMapping
from blaze_tracker.settings import ExtractionSettings
from blaze_tracker.store import EventStore

Answer = str | dict | BaseException | Callable[[GeneratorPrompt], Any]


class StubGenerator:
    """Answers by prompt name.

    An answer may be a string, a dict (sent as JSON), an exception to raise,
    a callable taking the prompt (sync or async), or a list of those used in
    turn (the last one repeats). Unknown prompt names get "{}".
    """

    def __init__(self, answers: dict[str, Answer | list[Answer]] | None = None) -> None:
        self.answers: dict[str, Answer | list[Answer]] = dict(answers or {})
        self.calls: list[GeneratorPrompt] = []
        self.temperatures: list[float] = []

    def respond(self, name: str, *answers: Answer) -> "StubGenerator":
        self.answers[name] = list(answers) if len(answers) > 1 else answers[0]
        return self

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.calls]

    def count(self, name: str) -> int:
        return self.names.count(name)

    def _next_answer(self, name: str) -> Answer:
        answer = self.answers.get(name, "{}")
        if isinstance(answer, list):
            if len(answer) > 1:
                return answer.pop(0)
            return answer[0]
        return answer

    async def generate(
        self,
        prompt: GeneratorPrompt,
        *,
        temperature: float,
        max_tokens: int,
        abort: asyncio.Event | None = None,
    ) -> str:
        self.calls.append(prompt)
        self.temperatures.append(temperature)
        answer = self._next_answer(prompt.name)
        if callable(answer) and not isinstance(answer, BaseException):
            answer = answer(prompt)
            if inspect.isawaitable(answer):
                answer = await answer
        if isinstance(answer, BaseException):
            raise answer
        if isinstance(answer, dict):
            return json.dumps(answer)
        return answer


class RecordingDisambiguator:
    """Answers from a fixed table and records every question."""

    def __init__(self, answers: dict[str, str | None] | None = None) -> None:
        self.answers = dict(answers or {})
        self.asked: list[list[str]] = []

    async def resolve(
        self, unresolved_names: list[str], canonical_names: list[str],
    ) -> list[NameMapping]:
        self.asked.append(list(unresolved_names))
        return [
            NameMapping(unresolved_name=n, resolved_to=self.answers.get(n))
            for n in unresolved_names
        ]


def build_chat(
    texts: list[str] | int,
    speakers: tuple[str, str] = ("Alex", "Luna"),
    user_name: str = "Alex",
    character_name: str = "Luna",
) -> ExtractionContext:
    """Chat alternating user / character turns, user first."""
    if isinstance(texts, int):
        texts = [f"Message {i}" for i in range(texts)]
    chat = [
        ChatMessage(name=speakers[i % 2], text=text, is_user=i % 2 == 0)
        for i, text in enumerate(texts)
    ]
    return ExtractionContext(chat=chat, user_name=user_name, character_name=character_name)


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def store() -> EventStore:
    return EventStore()


@pytest.fixture
def settings() -> ExtractionSettings:
    return ExtractionSettings()


@pytest.fixture
def make_chat():
    return build_chat
