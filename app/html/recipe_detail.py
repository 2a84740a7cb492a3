from jinja2 import Environment
from markupsafe import Markup, escape

from royal_recipes.markup import Annotation, parse_instruction
from royal_recipes.models import Recipe, RecipeStep, StepType


STEP_STYLES = {
    StepType.PREP: "step-prep",
    StepType.COOK: "step-cook",
    StepType.TIMING: "step-timing",
}


def rich_instruction(text: str) -> Markup:
    """Instruction html with each ingredient shown by name, quantity on hover."""
    html = Markup("")
    for token in parse_instruction(text):
        if isinstance(token, Annotation):
            html += Markup(
                '<span class="ingredient" tabindex="0">{name}'
                '<span class="ingredient-quantity" role="tooltip">{quantity}</span>'
                "</span>"
            ).format(name=token.name, quantity=token.quantity)
        else:
            html += escape(token.text)
    return html


class StepView:
    def __init__(self, index: int, step: RecipeStep) -> None:
        self.index = index
        self.step = step

    @property
    def number(self) -> int:
        return self.index + 1

    @property
    def type(self) -> str:
        return self.step.type.value

    @property
    def css_class(self) -> str:
        return STEP_STYLES[self.step.type]

    @property
    def instruction(self) -> Markup:
        return rich_instruction(self.step.instruction)

    @property
    def insight(self) -> str | None:
        return self.step.insight


class RecipeDetail:
    def __init__(
        self,
        recipe: Recipe,
        *,
        session_id: str,
        environment: Environment,
        template_name: str = "recipe-detail.html",
    ) -> None:
        self.recipe = recipe
        self.session_id = session_id
        self.env = environment
        self.name = template_name

    @property
    def title(self) -> str:
        return self.recipe.title

    @property
    def description(self) -> str:
        return self.recipe.description

    @property
    def ingredients(self) -> tuple[str, ...]:
        return self.recipe.ingredients

    @property
    def steps(self) -> list[StepView]:
        return [StepView(i, s) for i, s in enumerate(self.recipe.steps)]

    def render(self) -> str:
        return self.env.get_template(self.name).render(recipe=self)
