"""Ordering and pacing of step images and narrated playback.

Every loop here captures a version number when it starts. Anything that
changes what the loop is working on bumps the version, and a loop that finds
its version stale stops without touching shared state.
"""

import asyncio
from enum import Enum
import functools
import logging
from typing import Awaitable, Callable, Mapping, Protocol, Sequence

from royal_recipes.models import Recipe, RecipeStep
from royal_recipes.retry import Sleep


logger = logging.getLogger(__name__)


STEP_PACING = 4.0
NARRATION_ADVANCE = 1.5


class StepGenerator(Protocol):
    async def generate_step_visual(
        self,
        instruction: str,
        previous_instructions: Sequence[str] = (),
    ) -> str | None: ...

    async def generate_step_audio(self, instruction: str) -> str | None: ...


type OnImage = Callable[[int, str], Awaitable[None]]


class StepImageStore:
    """Step index to image handle.

    Preloaded images win over generated ones. At most one generation per
    index is in flight at a time; later callers wait on the first.
    """

    def __init__(self, preloaded: Mapping[int, str] | None = None) -> None:
        self._preloaded: dict[int, str] = {} if preloaded is None else dict(preloaded)
        self._generated: dict[int, str] = {}
        self._in_flight: dict[int, asyncio.Task[str | None]] = {}

    def __contains__(self, index: object) -> bool:
        return index in self._preloaded or index in self._generated

    def get(self, index: int) -> str | None:
        return self._preloaded.get(index) or self._generated.get(index)

    def preload(self, index: int, handle: str) -> None:
        self._preloaded[index] = handle

    def put(self, index: int, handle: str) -> None:
        self._generated[index] = handle

    def snapshot(self) -> dict[int, str]:
        return {**self._generated, **self._preloaded}

    def clear(self) -> None:
        # In flight tasks are left to finish; whoever awaits them is stale.
        self._preloaded.clear()
        self._generated.clear()
        self._in_flight.clear()

    async def generate(
        self,
        index: int,
        generate: Callable[[], Awaitable[str | None]],
    ) -> str | None:
        """Cached handle for ``index`` or the result of a single shared request.

        Nothing is written to the store. Callers put the result once they know
        they are still current.
        """
        cached = self.get(index)
        if cached:
            return cached

        task = self._in_flight.get(index)
        if task is None:
            task = asyncio.ensure_future(generate())
            self._in_flight[index] = task
            task.add_done_callback(functools.partial(self._done, index))
        return await asyncio.shield(task)

    def _done(self, index: int, task: asyncio.Task[str | None]) -> None:
        if self._in_flight.get(index) is task:
            del self._in_flight[index]


async def load_step_image(
    llm: StepGenerator,
    store: StepImageStore,
    steps: Sequence[RecipeStep],
    index: int,
) -> str | None:
    """Image for one step with every earlier instruction as context."""
    context = [s.instruction for s in steps[:index]]
    return await store.generate(
        index,
        functools.partial(llm.generate_step_visual, steps[index].instruction, context),
    )


class StepImageSequencer:
    """Generates every step image of a recipe, in order, one at a time."""

    def __init__(
        self,
        llm: StepGenerator,
        store: StepImageStore | None = None,
        *,
        pacing: float = STEP_PACING,
        sleep: Sleep | None = None,
        on_image: OnImage | None = None,
    ) -> None:
        self.llm = llm
        self.store = StepImageStore() if store is None else store
        self.pacing = pacing
        self._sleep = asyncio.sleep if sleep is None else sleep
        self.on_image = on_image
        self._version = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def version(self) -> int:
        return self._version

    def is_current(self, version: int) -> bool:
        return version == self._version

    def start(self, recipe: Recipe, *, reset: bool = True) -> asyncio.Task[None]:
        """Start on ``recipe``. Any loop already running goes stale."""
        self._version += 1
        if reset:
            self.store.clear()
        self._task = asyncio.create_task(self._run(recipe.steps, self._version))
        return self._task

    def stop(self) -> None:
        self._version += 1

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self, steps: Sequence[RecipeStep], version: int) -> None:
        for i in range(len(steps)):
            if not self.is_current(version):
                logger.debug("Step image loop %d is stale, stopping at step %d", version, i)
                return

            if i not in self.store:
                handle = await load_step_image(self.llm, self.store, steps, i)
                if not self.is_current(version):
                    logger.debug("Dropping step %d image from stale loop %d", i, version)
                    return
                if handle:
                    self.store.put(i, handle)
                    if self.on_image is not None:
                        await self.on_image(i, handle)
                else:
                    logger.warning("No image for step %d", i)

            if i < len(steps) - 1:
                await self._sleep(self.pacing)


class PlaybackState(Enum):
    playing = "playing"
    paused = "paused"
    finished = "finished"
    closed = "closed"


class StepContent:
    def __init__(
        self,
        *,
        index: int,
        step: RecipeStep,
        image: str | None,
        audio: str | None,
        last: bool,
    ) -> None:
        self.index = index
        self.step = step
        self.image = image
        self.audio = audio
        self.last = last

    def __repr__(self) -> str:
        return f"<StepContent(index={self.index}, image={bool(self.image)}, audio={bool(self.audio)})>"


type OnStep = Callable[[StepContent], Awaitable[None]]


class NarrationPlayer:
    """Narrated slideshow of a recipe's steps.

    Each step shows its image and plays its spoken instruction. When the audio
    ends and the player is still playing, the next step follows after
    ``advance_delay`` seconds. The next step's image is fetched in the
    background while the current one plays.
    """

    def __init__(
        self,
        recipe: Recipe,
        llm: StepGenerator,
        store: StepImageStore,
        *,
        on_step: OnStep,
        advance_delay: float = NARRATION_ADVANCE,
        sleep: Sleep | None = None,
    ) -> None:
        self.recipe = recipe
        self.llm = llm
        self.store = store
        self.on_step = on_step
        self.advance_delay = advance_delay
        self._sleep = asyncio.sleep if sleep is None else sleep
        self.index = 0
        self.state = PlaybackState.playing
        self._version = 0
        self._preloads: set[asyncio.Task[None]] = set()

    @property
    def steps(self) -> tuple[RecipeStep, ...]:
        return self.recipe.steps

    @property
    def last(self) -> bool:
        return self.index == len(self.steps) - 1

    @property
    def playing(self) -> bool:
        return self.state is PlaybackState.playing

    async def load(self) -> StepContent | None:
        """Load and emit the current step. None if it went stale meanwhile."""
        if self.state is PlaybackState.closed or not self.steps:
            return None
        version = self._version
        index = self.index
        self._preload(index + 1)

        image = await load_step_image(self.llm, self.store, self.steps, index)
        if version != self._version:
            return None
        if image:
            self.store.put(index, image)

        audio = await self.llm.generate_step_audio(self.steps[index].instruction)
        if version != self._version:
            return None

        content = StepContent(
            index=index,
            step=self.steps[index],
            image=image,
            audio=audio,
            last=index == len(self.steps) - 1,
        )
        await self.on_step(content)
        return content

    def _preload(self, index: int) -> None:
        if index >= len(self.steps) or index in self.store:
            return
        task = asyncio.create_task(self._preload_image(index, self._version))
        self._preloads.add(task)
        task.add_done_callback(self._preloads.discard)

    async def _preload_image(self, index: int, version: int) -> None:
        handle = await load_step_image(self.llm, self.store, self.steps, index)
        if version != self._version:
            logger.debug("Preload of step %d finished after playback moved on", index)
        if handle and self.state is not PlaybackState.closed:
            self.store.put(index, handle)

    async def seek(self, index: int) -> StepContent | None:
        if not 0 <= index < len(self.steps):
            raise IndexError(f"No step {index}.")
        self._version += 1
        self.index = index
        if self.state is PlaybackState.finished:
            self.state = PlaybackState.playing
        return await self.load()

    async def audio_ended(self) -> StepContent | None:
        """Current step's audio finished. Maybe move on to the next step."""
        if self.last or not self.playing:
            if self.last:
                self.state = PlaybackState.finished
            return None

        version = self._version
        await self._sleep(self.advance_delay)
        if version != self._version or not self.playing:
            return None

        self._version += 1
        self.index += 1
        return await self.load()

    def toggle(self) -> PlaybackState:
        match self.state:
            case PlaybackState.playing:
                self.state = PlaybackState.paused
            case PlaybackState.paused | PlaybackState.finished:
                self.state = PlaybackState.playing
            case _:
                pass
        return self.state

    def close(self) -> None:
        self._version += 1
        self.state = PlaybackState.closed
