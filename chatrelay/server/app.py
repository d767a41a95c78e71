"""FastAPI application for the persona chat API.

REST endpoints for characters, conversations and transcripts, plus the
streaming send endpoint that relays the model's reply as event-stream
frames.

Errors found before the stream starts are reported with a status code
and a JSON ``{"message": ...}`` body. Once the first frame has been
sent, the only channel left is an in-band error frame.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from chatrelay import __version__
from chatrelay.errors import (
    CharacterNotFoundError,
    ConversationNotFoundError,
    SessionActiveError,
)
from chatrelay.persistence.database import close_db, init_db
from chatrelay.persistence.repository import (
    SQLiteTranscriptRepository,
    TranscriptRepository,
    start_conversation,
)
from chatrelay.persistence.seed import seed_repository
from chatrelay.providers.base import CompletionSource
from chatrelay.providers.litellm_provider import LiteLLMCompletionSource
from chatrelay.providers.registry import load_config
from chatrelay.schemas.chat import (
    Character,
    CharacterCreate,
    Conversation,
    ConversationCreate,
    ConversationDetail,
    ErrorResponse,
    Message,
    SendMessageRequest,
)
from chatrelay.schemas.config import RelayConfig
from chatrelay.schemas.streaming import Frame, FrameKind
from chatrelay.streaming.cancellation import CancellationController
from chatrelay.streaming.frames import MEDIA_TYPE, STREAM_HEADERS, encode_frame
from chatrelay.streaming.producer import StreamProducer

logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _error(status_code: int, message: str, field: str | None = None) -> JSONResponse:
    body = ErrorResponse(message=message, field=field)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _watch_disconnect(request: Request, cancel: CancellationController) -> None:
    """Fire ``cancel`` when the client goes away."""
    while not cancel.cancelled:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            cancel.cancel("client disconnected")
            return


async def _relay(
    first: Frame,
    frames: AsyncIterator[Frame],
    watcher: asyncio.Task,
) -> AsyncIterator[bytes]:
    """Encode frames for the response body, starting with one already pulled."""
    try:
        yield encode_frame(first)
        if first.is_terminal:
            return
        async for frame in frames:
            yield encode_frame(frame)
    finally:
        watcher.cancel()
        await frames.aclose()


def get_repository(request: Request) -> TranscriptRepository:
    return request.app.state.repository


def get_producer(request: Request) -> StreamProducer:
    return request.app.state.producer


def create_app(
    config: RelayConfig | None = None,
    *,
    repository: TranscriptRepository | None = None,
    source: CompletionSource | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Relay configuration; loaded from defaults.toml when omitted.
        repository: Transcript store to use. When omitted, a SQLite store
            at ``config.server.db_path`` is opened (and seeded) on startup.
        source: Completion source; defaults to LiteLLM with ``config.model``.
    """
    config = config or load_config()
    source = source or LiteLLMCompletionSource(config.model)

    def _make_producer(repo: TranscriptRepository) -> StreamProducer:
        return StreamProducer(
            repo,
            source,
            preamble_template=config.persona.preamble,
            timeout=config.model.timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = None
        if app.state.repository is None:
            db = await init_db(config.server.db_path)
            app.state.repository = SQLiteTranscriptRepository(db)
            app.state.producer = _make_producer(app.state.repository)
            if config.server.seed:
                await seed_repository(app.state.repository)
        try:
            yield
        finally:
            if db is not None:
                await close_db(db)

    app = FastAPI(
        title="chatrelay",
        description="Persona chat with live token streaming",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.repository = repository
    app.state.producer = _make_producer(repository) if repository is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error handlers ───────────────────────────────────────────

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        loc = [str(part) for part in first.get("loc", ())]
        if loc and loc[0] == "path":
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid ID", loc[-1])
        message = str(first.get("msg", "Invalid request"))
        message = message.removeprefix("Value error, ")
        field = loc[-1] if len(loc) > 1 else None
        return _error(status.HTTP_400_BAD_REQUEST, message, field)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    # ── Characters ───────────────────────────────────────────────

    @app.get("/api/characters", response_model=list[Character])
    async def list_characters(
        repo: TranscriptRepository = Depends(get_repository),
    ) -> list[Character]:
        return await repo.list_characters()

    @app.get("/api/characters/{character_id}", response_model=Character, responses=_ERROR_RESPONSES)
    async def get_character(
        character_id: int,
        repo: TranscriptRepository = Depends(get_repository),
    ):
        character = await repo.get_character(character_id)
        if character is None:
            return _error(status.HTTP_404_NOT_FOUND, "Character not found")
        return character

    @app.post(
        "/api/characters",
        response_model=Character,
        status_code=status.HTTP_201_CREATED,
        responses=_ERROR_RESPONSES,
    )
    async def create_character(
        body: CharacterCreate,
        repo: TranscriptRepository = Depends(get_repository),
    ) -> Character:
        return await repo.create_character(body)

    # ── Conversations ────────────────────────────────────────────

    @app.get("/api/conversations", response_model=list[ConversationDetail])
    async def list_conversations(
        repo: TranscriptRepository = Depends(get_repository),
    ) -> list[ConversationDetail]:
        return await repo.list_conversations()

    @app.get(
        "/api/conversations/{conversation_id}",
        response_model=ConversationDetail,
        responses=_ERROR_RESPONSES,
    )
    async def get_conversation(
        conversation_id: int,
        repo: TranscriptRepository = Depends(get_repository),
    ):
        conversation = await repo.get_conversation(conversation_id)
        if conversation is None:
            return _error(status.HTTP_404_NOT_FOUND, "Conversation not found")
        return conversation

    @app.post(
        "/api/conversations",
        response_model=Conversation,
        status_code=status.HTTP_201_CREATED,
        responses=_ERROR_RESPONSES,
    )
    async def create_conversation(
        body: ConversationCreate,
        repo: TranscriptRepository = Depends(get_repository),
    ):
        try:
            return await start_conversation(repo, body.character_id)
        except CharacterNotFoundError:
            return _error(status.HTTP_400_BAD_REQUEST, "Character not found", "characterId")

    # ── Messages ─────────────────────────────────────────────────

    @app.get(
        "/api/conversations/{conversation_id}/messages",
        response_model=list[Message],
        responses=_ERROR_RESPONSES,
    )
    async def list_messages(
        conversation_id: int,
        repo: TranscriptRepository = Depends(get_repository),
    ):
        if await repo.get_conversation(conversation_id) is None:
            return _error(status.HTTP_404_NOT_FOUND, "Conversation not found")
        return await repo.load_history(conversation_id)

    @app.post(
        "/api/conversations/{conversation_id}/messages",
        response_class=StreamingResponse,
        responses={
            200: {"content": {MEDIA_TYPE: {}}, "description": "Event stream of frames"},
            409: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
            **_ERROR_RESPONSES,
        },
    )
    async def send_message(
        conversation_id: int,
        body: SendMessageRequest,
        request: Request,
        producer: StreamProducer = Depends(get_producer),
    ) -> Response:
        """Persist the user message and stream the persona's reply."""
        try:
            session = await producer.open_session(conversation_id, body.content)
        except ConversationNotFoundError:
            return _error(status.HTTP_404_NOT_FOUND, "Conversation or character not found")
        except SessionActiveError as e:
            return _error(status.HTTP_409_CONFLICT, str(e))

        cancel = CancellationController()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel))
        frames = producer.stream(session, cancel)

        # Pull the first frame before committing to a 200 stream
        try:
            first = await anext(frames, None)
        except BaseException:
            watcher.cancel()
            await frames.aclose()
            raise

        if first is None or first.kind is FrameKind.ERROR:
            watcher.cancel()
            await frames.aclose()
            if first is None:
                # Client disconnected before the reply started
                return Response(status_code=status.HTTP_204_NO_CONTENT)
            return _error(status.HTTP_502_BAD_GATEWAY, first.error)

        return StreamingResponse(
            _relay(first, frames, watcher),
            media_type=MEDIA_TYPE,
            headers=STREAM_HEADERS,
        )

    return app
