import asyncio

import pytest

from royal_recipes.models import Recipe, RecipeStep, StepType
from royal_recipes.sequencing import (
    NarrationPlayer,
    PlaybackState,
    StepContent,
    StepImageSequencer,
    StepImageStore,
)


SOUP = Recipe(
    title="Tomato Soup",
    description="Smooth and warming.",
    ingredients=("6 tomatoes", "1 l water"),
    steps=(
        RecipeStep(instruction="Boil <<water|1 l>>.", type=StepType.COOK),
        RecipeStep(instruction="Blend the <<tomatoes|6>>.", type=StepType.PREP),
    ),
)


class Images:
    def __init__(self, events: list | None = None) -> None:
        self.got: list[tuple[int, str]] = []
        self.events = events

    async def __call__(self, index: int, handle: str) -> None:
        self.got.append((index, handle))
        if self.events is not None:
            self.events.append(("image", index))


class Steps:
    def __init__(self) -> None:
        self.got: list[StepContent] = []

    async def __call__(self, content: StepContent) -> None:
        self.got.append(content)

    @property
    def indexes(self) -> list[int]:
        return [c.index for c in self.got]


@pytest.mark.asyncio
async def test_images_are_generated_in_order_and_paced(recipe, make_llm, make_sleep) -> None:
    events: list = []
    llm = make_llm(events=events)
    images = Images(events)
    sequencer = StepImageSequencer(llm, pacing=4.0, sleep=make_sleep(events), on_image=images)

    await sequencer.start(recipe)

    assert events == [
        ("visual", recipe.steps[0].instruction),
        ("image", 0),
        ("sleep", 4.0),
        ("visual", recipe.steps[1].instruction),
        ("image", 1),
        ("sleep", 4.0),
        ("visual", recipe.steps[2].instruction),
        ("image", 2),
    ]
    assert sequencer.store.snapshot() == {
        0: "img:Dice the chicken into bite-sized cubes.",
        1: "img:Fry the chicken in chili oil until golden.",
        2: "img:Rest for 5 minutes, then squeeze over the lime.",
    }
    assert not sequencer.running


@pytest.mark.asyncio
async def test_each_step_gets_earlier_instructions_as_context(recipe, make_llm, sleep) -> None:
    llm = make_llm()
    await StepImageSequencer(llm, sleep=sleep).start(recipe)

    assert [context for _, context in llm.visual_calls] == [
        [],
        [recipe.steps[0].instruction],
        [recipe.steps[0].instruction, recipe.steps[1].instruction],
    ]


@pytest.mark.asyncio
async def test_missing_image_keeps_pacing(recipe, make_llm, make_sleep) -> None:
    events: list = []
    llm = make_llm(events=events, missing=[recipe.steps[1].instruction])
    images = Images()
    sequencer = StepImageSequencer(llm, sleep=make_sleep(events), on_image=images)

    await sequencer.start(recipe)

    assert [e[0] for e in events] == ["visual", "sleep", "visual", "sleep", "visual"]
    assert [i for i, _ in images.got] == [0, 2]
    assert 1 not in sequencer.store


@pytest.mark.asyncio
async def test_cached_step_is_skipped_but_still_paced(recipe, make_llm, sleep) -> None:
    llm = make_llm()
    store = StepImageStore({1: "data:image/png;base64,cHJlbG9hZGVk"})
    images = Images()
    sequencer = StepImageSequencer(llm, store, sleep=sleep, on_image=images)

    await sequencer.start(recipe, reset=False)

    assert [instruction for instruction, _ in llm.visual_calls] == [
        recipe.steps[0].instruction,
        recipe.steps[2].instruction,
    ]
    assert sleep.calls == [4.0, 4.0]
    assert [i for i, _ in images.got] == [0, 2]
    assert store.get(1) == "data:image/png;base64,cHJlbG9hZGVk"


@pytest.mark.asyncio
async def test_new_recipe_makes_running_loop_stale(recipe, make_llm, sleep, until) -> None:
    gate = asyncio.Event()
    llm = make_llm(gate=gate)
    images = Images()
    sequencer = StepImageSequencer(llm, sleep=sleep, on_image=images)

    first = sequencer.start(recipe)
    await until(lambda: len(llm.visual_calls) == 1)
    second = sequencer.start(SOUP)
    await until(lambda: len(llm.visual_calls) == 2)
    gate.set()
    await asyncio.gather(first, second)

    assert sequencer.store.snapshot() == {
        0: "img:Boil water.",
        1: "img:Blend the tomatoes.",
    }
    assert images.got == [(0, "img:Boil water."), (1, "img:Blend the tomatoes.")]
    assert sleep.calls == [4.0]


@pytest.mark.asyncio
async def test_stop_ends_loop_without_writing(recipe, make_llm, sleep, until) -> None:
    gate = asyncio.Event()
    llm = make_llm(gate=gate)
    images = Images()
    sequencer = StepImageSequencer(llm, sleep=sleep, on_image=images)

    task = sequencer.start(recipe)
    await until(lambda: len(llm.visual_calls) == 1)
    sequencer.stop()
    gate.set()
    await task

    assert sequencer.store.snapshot() == {}
    assert images.got == []
    assert len(llm.visual_calls) == 1
    assert sleep.calls == []


def test_store_prefers_preloaded_images() -> None:
    store = StepImageStore()
    assert 0 not in store
    assert store.get(0) is None

    store.put(0, "generated")
    store.preload(0, "preloaded")
    store.put(1, "generated")

    assert 0 in store
    assert store.get(0) == "preloaded"
    assert store.snapshot() == {0: "preloaded", 1: "generated"}

    store.clear()
    assert store.snapshot() == {}


@pytest.mark.asyncio
async def test_store_shares_in_flight_request(until) -> None:
    gate = asyncio.Event()
    calls = 0

    async def generate() -> str:
        nonlocal calls
        calls += 1
        await gate.wait()
        return "img"

    store = StepImageStore()
    first = asyncio.create_task(store.generate(0, generate))
    second = asyncio.create_task(store.generate(0, generate))
    await until(lambda: calls == 1)
    first.cancel()
    gate.set()

    assert await second == "img"
    assert calls == 1
    with pytest.raises(asyncio.CancelledError):
        await first

    # Results are not stored, so the next call asks again.
    assert await store.generate(0, generate) == "img"
    assert calls == 2


@pytest.mark.asyncio
async def test_store_returns_cached_without_generating() -> None:
    async def generate() -> str:
        raise AssertionError("Should not generate.")

    store = StepImageStore({3: "preloaded"})
    store.put(4, "generated")
    assert await store.generate(3, generate) == "preloaded"
    assert await store.generate(4, generate) == "generated"


def narration(recipe, llm, *, store=None, sleep=None, advance_delay=1.5):
    steps = Steps()
    player = NarrationPlayer(
        recipe,
        llm,
        StepImageStore() if store is None else store,
        on_step=steps,
        advance_delay=advance_delay,
        sleep=sleep,
    )
    return player, steps


@pytest.mark.asyncio
async def test_load_shows_first_step_and_preloads_next(recipe, make_llm, sleep, until) -> None:
    llm = make_llm()
    player, steps = narration(recipe, llm, sleep=sleep)

    content = await player.load()

    assert content is not None
    assert steps.indexes == [0]
    assert content.image == "img:Dice the chicken into bite-sized cubes."
    assert content.audio is not None and content.audio.startswith("data:audio/wav;base64,")
    assert not content.last
    assert llm.audio_calls == [recipe.steps[0].instruction]
    await until(lambda: 1 in player.store)
    assert player.store.get(1) == "img:Fry the chicken in chili oil until golden."


@pytest.mark.asyncio
async def test_load_uses_preloaded_image(recipe, make_llm, sleep, until) -> None:
    llm = make_llm()
    player, steps = narration(recipe, llm, store=StepImageStore({0: "pre"}), sleep=sleep)

    content = await player.load()

    assert content is not None and content.image == "pre"
    await until(lambda: 1 in player.store)
    assert recipe.steps[0].instruction not in [i for i, _ in llm.visual_calls]


@pytest.mark.asyncio
async def test_audio_end_advances_after_delay(recipe, make_llm, sleep) -> None:
    player, steps = narration(recipe, make_llm(), sleep=sleep)
    await player.load()

    content = await player.audio_ended()

    assert sleep.calls == [1.5]
    assert content is not None and content.index == 1
    assert player.index == 1
    assert steps.indexes == [0, 1]


@pytest.mark.asyncio
async def test_paused_player_does_not_advance(recipe, make_llm, sleep) -> None:
    player, steps = narration(recipe, make_llm(), sleep=sleep)
    await player.load()

    assert player.toggle() is PlaybackState.paused
    assert await player.audio_ended() is None
    assert sleep.calls == []
    assert player.index == 0
    assert steps.indexes == [0]


@pytest.mark.asyncio
async def test_pause_during_advance_delay(recipe, make_llm) -> None:
    player: NarrationPlayer | None = None

    async def pause_while_waiting(seconds: float) -> None:
        assert player is not None
        player.toggle()

    player, steps = narration(recipe, make_llm(), sleep=pause_while_waiting)
    await player.load()

    assert await player.audio_ended() is None
    assert player.state is PlaybackState.paused
    assert player.index == 0


@pytest.mark.asyncio
async def test_last_step_finishes(recipe, make_llm, sleep) -> None:
    player, steps = narration(recipe, make_llm(), sleep=sleep)

    content = await player.seek(2)
    assert content is not None and content.last

    assert await player.audio_ended() is None
    assert player.state is PlaybackState.finished
    assert sleep.calls == []

    await player.seek(0)
    assert player.state is PlaybackState.playing
    assert steps.indexes == [2, 0]


@pytest.mark.asyncio
async def test_toggle_from_finished_resumes(recipe, make_llm, sleep) -> None:
    player, _ = narration(recipe, make_llm(), sleep=sleep)
    await player.seek(2)
    await player.audio_ended()
    assert player.toggle() is PlaybackState.playing


@pytest.mark.asyncio
@pytest.mark.parametrize("index", (-1, 3))
async def test_seek_out_of_range(recipe, make_llm, index: int) -> None:
    player, steps = narration(recipe, make_llm())
    with pytest.raises(IndexError):
        await player.seek(index)
    assert steps.got == []


@pytest.mark.asyncio
async def test_seek_makes_pending_load_stale(recipe, make_llm, until) -> None:
    gate = asyncio.Event()
    llm = make_llm(gate=gate)
    player, steps = narration(recipe, llm)

    loading = asyncio.create_task(player.load())
    await until(lambda: recipe.steps[0].instruction in [i for i, _ in llm.visual_calls])
    seeking = asyncio.create_task(player.seek(2))
    await until(lambda: recipe.steps[2].instruction in [i for i, _ in llm.visual_calls])
    gate.set()

    assert await loading is None
    content = await seeking
    assert content is not None and content.index == 2
    assert steps.indexes == [2]


@pytest.mark.asyncio
async def test_close_during_load(recipe, make_llm, until) -> None:
    gate = asyncio.Event()
    llm = make_llm(gate=gate)
    player, steps = narration(recipe, llm)

    loading = asyncio.create_task(player.load())
    await until(lambda: len(llm.visual_calls) == 2)
    player.close()
    gate.set()

    assert await loading is None
    assert steps.got == []
    assert llm.audio_calls == []
    assert player.state is PlaybackState.closed
    assert await player.load() is None
