"""Q&A Board: live questions and replies with an administered maintenance mode."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from starlette.websockets import WebSocketState

from .config import Settings, load_backends_config, settings
from .dependencies import get_board
from .errors import register_exception_handlers
from .hub import Connection, as_sse
from .logging_setup import configure_logging
from .reply_generator import ReplyGenerator
from .router_admin import router as admin_router
from .router_members import router as members_router
from .router_questions import router as questions_router
from .service import BoardService

logger = logging.getLogger(__name__)

_WRITER_SHUTDOWN_TIMEOUT_SECONDS = 5.0


async def _pump_websocket(websocket: WebSocket, connection: Connection) -> None:
    """Drain one connection's queue onto its socket, then send the close frame."""
    try:
        while True:
            frame = await connection.next_frame()
            if frame is None:
                break
            await websocket.send_text(frame.data)
    except Exception as e:
        logger.debug("WebSocket send to %s failed: %s", connection.member.id, e)
        return
    if (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        try:
            await websocket.close(code=connection.close_code or 1000, reason=connection.close_reason or None)
        except Exception as e:
            logger.debug("WebSocket close for %s failed: %s", connection.member.id, e)


def create_app(app_settings: Settings | None = None, *, generator: ReplyGenerator | None = None) -> FastAPI:
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: configure logging, start the reply generator, build the board."""
        configure_logging(cfg.log_level, cfg.log_redact_extra_patterns)

        reply_generator = generator
        if reply_generator is None:
            backends_config = load_backends_config(cfg.backends_config_path)
            logger.info(
                "Loaded %d backends from %s",
                len(backends_config.get("backends", {})),
                cfg.backends_config_path,
            )
            reply_generator = ReplyGenerator(
                backends_config=backends_config,
                backend_name=cfg.ai_backend,
                model=cfg.ai_model,
                system_prompt=cfg.ai_system_prompt,
                fallback_text=cfg.ai_fallback_text,
                timeout_seconds=cfg.ai_timeout_seconds,
            )
        await reply_generator.start()

        board = BoardService.from_settings(cfg, generator=reply_generator)
        app.state.board = board
        app.state.started_at = datetime.now(timezone.utc)
        logger.info(
            "Q&A Board started (eviction=%s, order=%s, sessions=%s, ai=%s)",
            board.eviction,
            board.store.order,
            board.sessions.mode,
            "on" if cfg.ai_enabled else "off",
        )

        yield

        await board.shutdown()
        await reply_generator.stop()
        app.state.board = None
        logger.info("Q&A Board stopped")

    app = FastAPI(title="Q&A Board", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in cfg.cors_allowed_origins.split(",") if origin.strip()],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/health")
    async def health(request: Request):
        board = get_board(request)
        return {
            "status": "ok",
            "time": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": int((datetime.now(timezone.utc) - request.app.state.started_at).total_seconds()),
            "questions": board.store.count(),
            **board.hub.stats(),
        }

    @app.websocket(cfg.realtime_path)
    async def realtime(websocket: WebSocket):
        board: BoardService = websocket.app.state.board
        await websocket.accept()
        connection = Connection(queue_size=cfg.subscriber_queue_size, transport="websocket")
        writer = asyncio.create_task(_pump_websocket(websocket, connection))
        board.open_connection(connection)
        try:
            while not connection.closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    continue
                board.handle_client_message(connection, text)
        finally:
            board.close_connection(connection)
            try:
                await asyncio.wait_for(writer, timeout=_WRITER_SHUTDOWN_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.debug("WebSocket writer for %s did not finish in time", connection.member.id)

    @app.get("/events", include_in_schema=False)
    async def events(request: Request):
        """Read-only Server-Sent Events mirror of the real-time channel."""
        board = get_board(request)
        keepalive_seconds = max(1.0, float(cfg.sse_keepalive_seconds))
        connection = Connection(queue_size=cfg.subscriber_queue_size, transport="sse")
        board.open_connection(connection)

        async def event_stream():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        frame = await asyncio.wait_for(connection.next_frame(), timeout=keepalive_seconds)
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
                        continue
                    if frame is None:
                        break
                    yield as_sse(frame)
            finally:
                board.close_connection(connection)

        headers = {
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)

    app.include_router(questions_router)
    app.include_router(admin_router)
    app.include_router(members_router)
    return app


app = create_app()
