import asyncio
from collections import OrderedDict
import logging
import uuid
import weakref

from royal_recipes.llm_service import LLMService
from royal_recipes.models import LeftoverSuggestion, Recipe
from royal_recipes.retry import Sleep
from royal_recipes.sequencing import (
    NARRATION_ADVANCE,
    STEP_PACING,
    NarrationPlayer,
    OnImage,
    OnStep,
    StepImageSequencer,
    StepImageStore,
    load_step_image,
)


logger = logging.getLogger(__name__)


class SessionNotFound(Exception):
    pass


class RecipeSession:
    """Everything generated for the recipe a user is currently looking at."""

    def __init__(
        self,
        recipe: Recipe,
        *,
        llm: LLMService,
        id: str | None = None,
        pacing: float = STEP_PACING,
        advance_delay: float = NARRATION_ADVANCE,
        sleep: Sleep | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex if id is None else id
        self.recipe = recipe
        self.llm = llm
        self.advance_delay = advance_delay
        self._sleep = sleep
        self.store = StepImageStore()
        self._players: weakref.WeakSet[NarrationPlayer] = weakref.WeakSet()
        self.sequencer = StepImageSequencer(
            llm,
            self.store,
            pacing=pacing,
            sleep=sleep,
        )

    def __repr__(self) -> str:
        return f"<RecipeSession(id={self.id}, title={self.recipe.title})>"

    def replace_recipe(self, recipe: Recipe) -> None:
        """Swap in a new recipe. Loops and players on the old one go stale."""
        self.sequencer.stop()
        self._close_players()
        self.store.clear()
        self.recipe = recipe

    def generate_step_images(
        self, on_image: OnImage | None = None
    ) -> asyncio.Task[None]:
        self.sequencer.on_image = on_image
        return self.sequencer.start(self.recipe, reset=False)

    def stop(self) -> None:
        self.sequencer.stop()

    def close(self) -> None:
        self.sequencer.stop()
        self._close_players()

    def _close_players(self) -> None:
        for player in list(self._players):
            player.close()
        self._players.clear()

    async def dish_visual(self) -> str | None:
        return await self.llm.generate_recipe_visual(
            self.recipe.title, self.recipe.description
        )

    async def leftovers(self) -> list[LeftoverSuggestion]:
        if not self.recipe.ingredients:
            return []
        return await self.llm.generate_leftover_suggestions(
            self.recipe.ingredients, self.recipe.title
        )

    async def step_visual(self, index: int) -> str | None:
        """Image for one step, generating it if the background loop hasn't."""
        recipe = self.recipe
        if not 0 <= index < len(recipe.steps):
            raise IndexError(f"No step {index}.")
        handle = await load_step_image(self.llm, self.store, recipe.steps, index)
        if recipe is not self.recipe:
            logger.debug("Recipe changed while generating step %d image", index)
            return None
        if handle:
            self.store.put(index, handle)
        return handle

    async def step_audio(self, index: int) -> str | None:
        if not 0 <= index < len(self.recipe.steps):
            raise IndexError(f"No step {index}.")
        return await self.llm.generate_step_audio(self.recipe.steps[index].instruction)

    def narration(self, on_step: OnStep) -> NarrationPlayer:
        player = NarrationPlayer(
            self.recipe,
            self.llm,
            self.store,
            on_step=on_step,
            advance_delay=self.advance_delay,
            sleep=self._sleep,
        )
        self._players.add(player)
        return player


class SessionStore:
    """In memory sessions, oldest dropped first once ``max_sessions`` is hit."""

    def __init__(self, *, max_sessions: int = 100) -> None:
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, RecipeSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, id: object) -> bool:
        return id in self._sessions

    def add(self, session: RecipeSession) -> RecipeSession:
        self._sessions[session.id] = session
        self._sessions.move_to_end(session.id)
        while len(self._sessions) > self.max_sessions:
            _, evicted = self._sessions.popitem(last=False)
            evicted.close()
            logger.info("Evicted %r", evicted)
        return session

    def get(self, id: str) -> RecipeSession:
        try:
            session = self._sessions[id]
        except KeyError:
            raise SessionNotFound(id) from None
        self._sessions.move_to_end(id)
        return session
