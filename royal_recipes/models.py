from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from royal_recipes.markup import Token, parse_instruction, strip_markup, to_speech


class StepType(Enum):
    PREP = "PREP"
    COOK = "COOK"
    TIMING = "TIMING"


class RecipeStep(BaseModel):
    """One instruction. Absent and null insights are the same thing."""

    model_config = ConfigDict(frozen=True)

    instruction: str
    type: StepType
    insight: str | None = None

    @property
    def tokens(self) -> list[Token]:
        return parse_instruction(self.instruction)

    @property
    def plain(self) -> str:
        return strip_markup(self.instruction)

    @property
    def spoken(self) -> str:
        return to_speech(self.instruction)


class Recipe(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    description: str
    ingredients: tuple[str, ...]
    steps: tuple[RecipeStep, ...]

    def previous_instructions(self, index: int) -> list[str]:
        """Instructions of every step before ``index``, markup and all."""
        return [s.instruction for s in self.steps[:index]]


class LeftoverSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    description: str
    matching_ingredients: tuple[str, ...] = Field(alias="matchingIngredients")
