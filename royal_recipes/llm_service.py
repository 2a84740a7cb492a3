import logging
from typing import Any, Sequence

from pydantic import TypeAdapter, ValidationError

from royal_recipes.agemini import GeminiClient, GenerateContentResponse, Modality, Part
from royal_recipes.audio import SPEECH_SAMPLE_RATE, pcm_to_wav, wav_data_uri
from royal_recipes.errors import EmptyResponse, SchemaMismatch
from royal_recipes.markup import to_speech
from royal_recipes.models import LeftoverSuggestion, Recipe
from royal_recipes.prompts import (
    LEFTOVERS_SCHEMA,
    RECIPE_SCHEMA,
    CreateRecipePrompt,
    DishVisualPrompt,
    LeftoversPrompt,
    StepVisualPrompt,
)
from royal_recipes.retry import Sleep, retry_with_backoff


logger = logging.getLogger(__name__)


LEFTOVERS = TypeAdapter(list[LeftoverSuggestion])


def first_image(resp: GenerateContentResponse) -> str | None:
    for inline in resp.inline_data:
        return inline.data_uri
    return None


class LLMService:
    """The five generation calls.

    ``generate_recipe`` is the only one that raises. The others are
    decoration: they log what went wrong and hand back nothing.
    """

    def __init__(
        self,
        gemini: GeminiClient | None = None,
        *,
        max_attempts: int = 3,
        base_delay_ms: int = 2000,
        sleep: Sleep | None = None,
    ) -> None:
        self.gemini = GeminiClient() if gemini is None else gemini
        self.config = self.gemini.config
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    async def _generate(
        self,
        *,
        model: str,
        parts: str | list[Part],
        generation_config: dict[str, Any] | None = None,
    ) -> GenerateContentResponse:
        return await retry_with_backoff(
            lambda: self.gemini.generate_content(
                model=model,
                parts=parts,
                generation_config=generation_config,
            ),
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            sleep=self._sleep,
        )

    async def generate_recipe(self, query: str) -> Recipe:
        resp = await self._generate(
            model=self.config.text_model,
            parts=str(CreateRecipePrompt(query)),
            generation_config={
                "responseMimeType": "application/json",
                "responseSchema": RECIPE_SCHEMA,
                "temperature": 0.3,
            },
        )
        text = resp.text
        if not text:
            raise EmptyResponse("No content generated.")
        try:
            return Recipe.model_validate_json(text)
        except ValidationError as e:
            raise SchemaMismatch(f"Recipe did not match the schema. {e}") from e

    async def generate_leftover_suggestions(
        self,
        ingredients: Sequence[str],
        current_title: str,
    ) -> list[LeftoverSuggestion]:
        try:
            resp = await self._generate(
                model=self.config.text_model,
                parts=str(LeftoversPrompt(ingredients, current_title)),
                generation_config={
                    "responseMimeType": "application/json",
                    "responseSchema": LEFTOVERS_SCHEMA,
                    "temperature": 0.5,
                },
            )
            text = resp.text
            if not text:
                return []
            return LEFTOVERS.validate_json(text)
        except Exception:
            logger.exception("Failed to generate leftovers for %r", current_title)
            return []

    async def generate_recipe_visual(self, title: str, description: str) -> str | None:
        try:
            resp = await self._generate(
                model=self.config.image_model,
                parts=str(DishVisualPrompt(title, description)),
            )
        except Exception:
            logger.exception("Failed to generate image for %r", title)
            return None
        return first_image(resp)

    async def generate_step_visual(
        self,
        instruction: str,
        previous_instructions: Sequence[str] = (),
    ) -> str | None:
        prompt = StepVisualPrompt(instruction, previous_instructions)
        try:
            resp = await self._generate(
                model=self.config.image_model,
                parts=str(prompt),
            )
        except Exception:
            logger.exception("Failed to generate step image for %r", prompt.action)
            return None
        return first_image(resp)

    async def generate_step_audio(self, instruction: str) -> str | None:
        spoken = to_speech(instruction)
        try:
            resp = await self._generate(
                model=self.config.tts_model,
                parts=[Part(text=spoken)],
                generation_config={
                    "responseModalities": [Modality.audio.value],
                    "speechConfig": {
                        "voiceConfig": {
                            "prebuiltVoiceConfig": {"voiceName": self.config.voice},
                        },
                    },
                },
            )
            inline = resp.parts[0].inline_data if resp.parts else None
            if inline is None or not inline.data:
                return None
            pcm = inline.decoded
        except Exception:
            logger.exception("Failed to generate audio for %r", spoken)
            return None
        return wav_data_uri(pcm_to_wav(pcm, SPEECH_SAMPLE_RATE))

    async def close(self) -> None:
        await self.gemini.close()

