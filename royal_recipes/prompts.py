from typing import Any, Sequence

from royal_recipes.markup import strip_markup


MAX_STEP_PROMPT_CHARS = 150


RECIPE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {
            "type": "STRING",
            "description": "The name of the dish.",
        },
        "description": {
            "type": "STRING",
            "description": "A short, appetizing description of the dish (max 20 words).",
        },
        "ingredients": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "List of ingredients with quantities.",
        },
        "steps": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "instruction": {
                        "type": "STRING",
                        "description": (
                            "The action to perform. IMPORTANT: Wrap mentioned "
                            "ingredients in <<Name|Quantity>> tags. Calculate the "
                            "specific amount for this step. "
                            "Example: 'Add <<butter|50g>> to pan'."
                        ),
                    },
                    "type": {
                        "type": "STRING",
                        "enum": ["PREP", "COOK", "TIMING"],
                        "description": (
                            "Category of the step. PREP for cutting/mixing, "
                            "COOK for heating/frying, TIMING for specific wait times."
                        ),
                    },
                    "insight": {
                        "type": "STRING",
                        "description": (
                            "Optional helpful tip, technique explanation, "
                            "or safety reminder."
                        ),
                        "nullable": True,
                    },
                },
                "required": ["instruction", "type"],
            },
        },
    },
    "required": ["title", "description", "ingredients", "steps"],
}


LEFTOVERS_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "description": {"type": "STRING"},
            "matchingIngredients": {"type": "ARRAY", "items": {"type": "STRING"}},
        },
        "required": ["title", "description", "matchingIngredients"],
    },
}


CREATE_RECIPE_PROMPT = """
Create a detailed cooking recipe based on this request: "{query}".
Classify each step accurately as PREP, COOK, or TIMING.
Include helpful, short insights for complex steps.

CRITICAL INSTRUCTION FORMATTING:
When an ingredient is mentioned in a step, you MUST wrap it in double angle brackets
like this: <<Ingredient Name|Specific Quantity For This Step>>.
If the recipe calls for "1 cup sugar" but this step only uses half, write: "Add <<sugar|1/2 cup>>...".
Example: "Whisk the <<eggs|2>> and <<vanilla|1 tsp>> together."
""".strip()


LEFTOVERS_PROMPT = """
I just made "{title}" using these ingredients: {ingredients}.
Suggest 3 distinct, creative, and simple recipes I could make with the potential
leftovers or remaining ingredients from this list.
Focus on minimizing food waste.
""".strip()


DISH_VISUAL_PROMPT = """
A minimalistic, artistic, shape-based vector style illustration of {title}.
Description: {description}.
Style: Flat design, abstract food art, appetizing colors, creamy background.
Not photorealistic. No text in image.
""".strip()


STEP_VISUAL_PROMPT = """
Create a simple, flat vector art illustration for this cooking step.

CURRENT ACTION: "{action}"

{context}

IMPORTANT VISUAL RULES:
1. Depict the CURRENT ACTION.
2. VISUAL CONTINUITY: You MUST include the state of the dish from the PREVIOUS STEPS CONTEXT. For example, if beef was added to a pan in a previous step, show the pan WITH beef in it for this step.
3. Style: Minimalist, clean lines, pastel colors, instructional diagram style.
4. NO TEXT in the image.
""".strip()


START_OF_RECIPE = "Start of recipe."


def truncate(text: str, limit: int = MAX_STEP_PROMPT_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class CreateRecipePrompt:
    def __init__(self, query: str, *, template: str | None = None) -> None:
        self.query = query
        self.template = CREATE_RECIPE_PROMPT if template is None else template

    def __str__(self) -> str:
        return self.template.format(query=self.query)


class LeftoversPrompt:
    def __init__(self, ingredients: Sequence[str], title: str) -> None:
        self.ingredients = ingredients
        self.title = title

    def __str__(self) -> str:
        return LEFTOVERS_PROMPT.format(
            title=self.title,
            ingredients=", ".join(self.ingredients),
        )


class DishVisualPrompt:
    def __init__(self, title: str, description: str) -> None:
        self.title = title
        self.description = description

    def __str__(self) -> str:
        return DISH_VISUAL_PROMPT.format(
            title=self.title,
            description=self.description,
        )


class StepVisualPrompt:
    """Illustrates one step, drawn as a continuation of the steps before it.

    Markup is stripped everywhere so the image model sees plain ingredient
    names. Only the current action is truncated.
    """

    def __init__(
        self,
        instruction: str,
        previous_instructions: Sequence[str] = (),
    ) -> None:
        self.action = truncate(strip_markup(instruction))
        self.previous = [strip_markup(i) for i in previous_instructions]

    @property
    def context(self) -> str:
        if not self.previous:
            return START_OF_RECIPE
        return (
            "PREVIOUS STEPS CONTEXT (The dish state so far): "
            f"{'; '.join(self.previous)}."
        )

    def __str__(self) -> str:
        return STEP_VISUAL_PROMPT.format(action=self.action, context=self.context)
