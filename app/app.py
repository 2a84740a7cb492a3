import asyncio
import contextlib
import functools
import logging
from typing import Any, Awaitable, Callable

from jinja2 import Environment, FileSystemLoader, select_autoescape
from rich.logging import RichHandler
from starlette import status
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Mount, Route, WebSocketRoute
from starlette.staticfiles import StaticFiles
from starlette.websockets import WebSocket

from app import config
from app.html.recipe_detail import RecipeDetail, rich_instruction
from royal_recipes.audio import data_uri_payload
from royal_recipes.errors import GenerationError
from royal_recipes.llm_service import LLMService
from royal_recipes.sequencing import NarrationPlayer, StepContent
from royal_recipes.session import RecipeSession, SessionNotFound, SessionStore


logger = logging.getLogger(__name__)


CONFIG = config.Config()


RECIPE_FAILED = (
    "Sorry, we couldn't cook up a recipe for that. Please try a different request."
)


TEMPLATES = Environment(
    loader=FileSystemLoader(CONFIG.html_dir),
    autoescape=select_autoescape(),
)
TEMPLATES.filters["rich_instruction"] = rich_instruction


def aHTMLResponse(route: Callable[..., Awaitable[str | tuple[str, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> HTMLResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            html, code = resp, 200
        else:
            html, code = resp
        return HTMLResponse(html, status_code=code)

    return wrapper


def get_session(app: Starlette, id: str) -> RecipeSession:
    sessions: SessionStore = app.state.sessions
    try:
        return sessions.get(id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Recipe not found.") from None


async def get_ws_session(ws: WebSocket) -> RecipeSession | None:
    sessions: SessionStore = ws.app.state.sessions
    try:
        return sessions.get(ws.path_params["id"])
    except SessionNotFound:
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return None


@aHTMLResponse
async def homepage(request: Request) -> str:
    return TEMPLATES.get_template("index.html").render(suggestions=CONFIG.suggestions)


@aHTMLResponse
async def create(request: Request) -> tuple[str, int]:
    async with request.form() as form:
        query = str(form.get("query", "")).strip()
        session_id = str(form.get("session_id", ""))

    if not query:
        html = TEMPLATES.get_template("index.html").render(
            suggestions=CONFIG.suggestions
        )
        return html, 400

    llm: LLMService = request.app.state.llm
    try:
        recipe = await llm.generate_recipe(query)
    except GenerationError:
        logger.exception("Failed to generate a recipe for %r", query)
        html = TEMPLATES.get_template("error.html").render(
            message=RECIPE_FAILED, query=query
        )
        return html, 502

    sessions: SessionStore = request.app.state.sessions
    if session_id in sessions:
        session = sessions.get(session_id)
        session.replace_recipe(recipe)
    else:
        session = sessions.add(
            RecipeSession(
                recipe,
                llm=llm,
                pacing=CONFIG.step_pacing,
                advance_delay=CONFIG.narration_advance,
            )
        )

    detail = RecipeDetail(recipe, session_id=session.id, environment=TEMPLATES)
    return detail.render(), 200


@aHTMLResponse
async def dish_visual(request: Request) -> str:
    session = get_session(request.app, request.path_params["id"])
    image = await session.dish_visual()
    return TEMPLATES.get_template("dish-visual.html").render(
        image=image, title=session.recipe.title
    )


@aHTMLResponse
async def leftovers(request: Request) -> str:
    session = get_session(request.app, request.path_params["id"])
    suggestions = await session.leftovers()
    return TEMPLATES.get_template("leftovers.html").render(suggestions=suggestions)


@aHTMLResponse
async def step_visual(request: Request) -> str:
    session = get_session(request.app, request.path_params["id"])
    index: int = request.path_params["index"]
    try:
        image = await session.step_visual(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="Step not found.") from None
    return TEMPLATES.get_template("step-visual.html").render(
        index=index, image=image, oob=False, prefix="cook-"
    )


async def step_audio(request: Request) -> Response:
    session = get_session(request.app, request.path_params["id"])
    try:
        audio = await session.step_audio(request.path_params["index"])
    except IndexError:
        raise HTTPException(status_code=404, detail="Step not found.") from None
    if audio is None:
        raise HTTPException(status_code=404, detail="No audio for this step.")
    return Response(data_uri_payload(audio), media_type="audio/wav")


async def until_disconnect(ws: WebSocket) -> None:
    while True:
        msg = await ws.receive()
        if msg["type"] == "websocket.disconnect":
            return


async def step_images(ws: WebSocket) -> None:
    """Streams step images, in order, as they are generated."""
    session = await get_ws_session(ws)
    if session is None:
        return
    await ws.accept()

    async def send(index: int, image: str) -> None:
        await ws.send_text(
            TEMPLATES.get_template("step-visual.html").render(
                index=index, image=image, oob=True, prefix=""
            )
        )

    task = session.generate_step_images(on_image=send)
    listener = asyncio.create_task(until_disconnect(ws))
    done, _ = await asyncio.wait(
        {task, listener}, return_when=asyncio.FIRST_COMPLETED
    )

    if listener in done:
        logger.info("Step image stream for %r disconnected", session)
        session.stop()
        return

    listener.cancel()
    if (e := task.exception()) is not None:
        logger.error("Step image stream for %r failed", session, exc_info=e)
    await ws.close()


async def tutorial(ws: WebSocket) -> None:
    """Narrated playback. The browser reports audio ends and button presses."""
    session = await get_ws_session(ws)
    if session is None:
        return
    await ws.accept()

    async def send_step(content: StepContent) -> None:
        await ws.send_text(
            TEMPLATES.get_template("tutorial-step.html").render(
                content=content,
                total=len(player.steps),
                state=player.state.value,
            )
        )

    player: NarrationPlayer = session.narration(on_step=send_step)
    pending: set[asyncio.Task[StepContent | None]] = set()

    def spawn(coro: Awaitable[StepContent | None]) -> None:
        task = asyncio.ensure_future(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    spawn(player.load())
    try:
        async for msg in ws.iter_json():
            if not isinstance(msg, dict):
                continue
            match msg.get("event"):
                case "ended":
                    spawn(player.audio_ended())
                case "toggle":
                    state = player.toggle()
                    await ws.send_text(
                        TEMPLATES.get_template("tutorial-controls.html").render(
                            state=state.value
                        )
                    )
                case "seek":
                    try:
                        index = int(msg.get("index", -1))
                    except (TypeError, ValueError):
                        continue
                    if 0 <= index < len(player.steps):
                        spawn(player.seek(index))
                case other:
                    logger.warning("Unknown tutorial event %r", other)
    finally:
        player.close()


@contextlib.asynccontextmanager
async def lifespan(app: Starlette):
    yield
    await app.state.llm.close()


def create_app(
    llm: LLMService | None = None,
    *,
    sessions: SessionStore | None = None,
) -> Starlette:
    logging.basicConfig(
        level=CONFIG.log_level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )

    app = Starlette(
        debug=True if CONFIG.env == config.Env.local else False,
        routes=[
            Route("/", homepage),
            Route("/recipes", create, methods=["POST"]),
            Route("/recipes/{id}/visual", dish_visual),
            Route("/recipes/{id}/leftovers", leftovers),
            Route("/recipes/{id}/steps/{index:int}/visual", step_visual),
            Route("/recipes/{id}/steps/{index:int}/audio", step_audio),
            WebSocketRoute("/recipes/{id}/steps", step_images),
            WebSocketRoute("/recipes/{id}/tutorial", tutorial),
            Mount("/assets", StaticFiles(directory=CONFIG.assets_dir), name="assets"),
        ],
        lifespan=lifespan,
    )

    app.state.llm = LLMService() if llm is None else llm
    app.state.sessions = (
        SessionStore(max_sessions=CONFIG.max_sessions) if sessions is None else sessions
    )
    return app


app = create_app()
