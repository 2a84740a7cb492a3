import asyncio
import base64
import json
from typing import Any, Callable, Sequence

import httpx
import pytest

from royal_recipes.agemini import GeminiClient
from royal_recipes.audio import pcm_to_wav, wav_data_uri
from royal_recipes.config import GeminiConfig
from royal_recipes.errors import UpstreamFailure
from royal_recipes.markup import strip_markup, to_speech
from royal_recipes.models import LeftoverSuggestion, Recipe


SPICY_CHICKEN = {
    "title": "Spicy Chicken",
    "description": "Crispy chicken tossed in chili oil.",
    "ingredients": ["500g chicken thighs", "2 tbsp chili oil", "1 lime"],
    "steps": [
        {"instruction": "Dice the <<chicken|500g>> into bite-sized cubes.", "type": "PREP"},
        {
            "instruction": "Fry the <<chicken|500g>> in <<chili oil|2 tbsp>> until golden.",
            "type": "COOK",
            "insight": "Don't crowd the pan.",
        },
        {"instruction": "Rest for 5 minutes, then squeeze over the <<lime|1>>.", "type": "TIMING", "insight": None},
    ],
}


class SleepRecorder:
    def __init__(self, events: list[Any] | None = None) -> None:
        self.calls: list[float] = []
        self.events = events

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.events is not None:
            self.events.append(("sleep", seconds))
        await asyncio.sleep(0)


class FakeLLM:
    """Stands in for LLMService. Images and audio are tagged strings."""

    def __init__(
        self,
        recipe: Recipe | None = None,
        *,
        events: list[Any] | None = None,
        gate: asyncio.Event | None = None,
        missing: Sequence[str] = (),
        fail_recipe: bool = False,
    ) -> None:
        self.recipe = recipe
        self.events = [] if events is None else events
        self.gate = gate
        self.missing = set(missing)
        self.fail_recipe = fail_recipe
        self.visual_calls: list[tuple[str, list[str]]] = []
        self.audio_calls: list[str] = []
        self.queries: list[str] = []

    async def generate_recipe(self, query: str) -> Recipe:
        self.queries.append(query)
        if self.fail_recipe or self.recipe is None:
            raise UpstreamFailure("Problem generating content.", status=500)
        return self.recipe

    async def generate_leftover_suggestions(
        self, ingredients: Sequence[str], current_title: str
    ) -> list[LeftoverSuggestion]:
        return [
            LeftoverSuggestion(
                title="Lime chicken wraps",
                description="Wrap the rest up.",
                matching_ingredients=("chicken thighs", "lime"),
            )
        ]

    async def generate_recipe_visual(self, title: str, description: str) -> str | None:
        return f"data:image/png;base64,{base64.b64encode(title.encode()).decode()}"

    async def generate_step_visual(
        self, instruction: str, previous_instructions: Sequence[str] = ()
    ) -> str | None:
        self.visual_calls.append((instruction, list(previous_instructions)))
        self.events.append(("visual", instruction))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if instruction in self.missing:
            return None
        return f"img:{strip_markup(instruction)}"

    async def generate_step_audio(self, instruction: str) -> str | None:
        self.audio_calls.append(instruction)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        return wav_data_uri(pcm_to_wav(to_speech(instruction).encode(), 24000))

    async def close(self) -> None:
        pass


async def wait_until(condition: Callable[[], bool], *, ticks: int = 100) -> None:
    for _ in range(ticks):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("Condition never became true.")


def gemini_response(*parts: dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": list(parts)}}]})


def text_part(text: str) -> dict[str, Any]:
    return {"text": text}


def inline_part(mime_type: str, data: bytes) -> dict[str, Any]:
    return {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode()}}


class Upstream:
    """Scripted generation endpoint. Replays responses and records requests."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        resp = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(resp, Exception):
            raise resp
        return httpx.Response(resp.status_code, headers=resp.headers, content=resp.content)

    def body(self, n: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[n].content)

    def prompt(self, n: int = -1) -> str:
        return self.body(n)["contents"][0]["parts"][0]["text"]

    def client(self) -> GeminiClient:
        return GeminiClient(
            config=GeminiConfig(api_key="test-key"),
            client=httpx.AsyncClient(
                base_url="https://gemini.test/v1beta/",
                headers={"x-goog-api-key": "test-key"},
                transport=httpx.MockTransport(self),
            ),
        )


@pytest.fixture
def recipe() -> Recipe:
    return Recipe.model_validate(SPICY_CHICKEN)


@pytest.fixture
def recipe_json() -> str:
    return json.dumps(SPICY_CHICKEN)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_sleep() -> type[SleepRecorder]:
    return SleepRecorder


@pytest.fixture
def make_llm() -> type[FakeLLM]:
    return FakeLLM


@pytest.fixture
def make_upstream() -> type[Upstream]:
    return Upstream


@pytest.fixture
def until() -> Callable[..., Any]:
    return wait_until


@pytest.fixture
def responses() -> Any:
    class Responses:
        ok = staticmethod(gemini_response)
        text = staticmethod(text_part)
        inline = staticmethod(inline_part)

    return Responses
