from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional
import json
import os
import time

from backend import create_backend
from chat.service import ChatService
from chat.transport import WebSocketTransport
from config import ChatConfig
from constants import ALLOWED_ORIGINS
from logging_config import get_logger, setup_logging
from routers.rooms import rooms_router

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

STARTED_AT = time.monotonic()


async def websocket_endpoint(websocket: WebSocket):
    """Single websocket per client; frames are JSON {"event": ..., "data": ...}."""
    chat: ChatService = websocket.app.state.chat
    transport: WebSocketTransport = websocket.app.state.transport

    await websocket.accept()
    handle = transport.connect(websocket)
    logger.info(f"WebSocket connection accepted: {handle}")

    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON frame from connection {handle}")
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                logger.warning(f"Ignoring frame without event name from connection {handle}")
                continue

            try:
                await chat.dispatch(handle, frame["event"], frame.get("data"))
            except Exception as e:
                logger.error(f"Error handling {frame['event']} from connection {handle}: {e}", exc_info=True)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {handle}")
    finally:
        await chat.handle_disconnect(handle)
        transport.disconnect(handle)


async def health(request: Request):
    chat: ChatService = request.app.state.chat
    if not chat.persistence.enabled:
        persistence = "disabled"
    elif await chat.persistence.call("ping", default=False):
        persistence = "connected"
    else:
        persistence = "disconnected"
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "rooms": len(chat.registry),
        "persistence": persistence,
    }


def create_app(config: Optional[ChatConfig] = None, backend_factory: Callable = create_backend) -> FastAPI:
    config = config or ChatConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transport = WebSocketTransport()
        chat = ChatService(transport, gateway=backend_factory(config), config=config)
        app.state.transport = transport
        app.state.chat = chat
        await chat.start()
        logger.info("Chat service started")
        try:
            yield
        finally:
            await chat.stop()

    app = FastAPI(lifespan=lifespan)

    # Configure CORS from ALLOWED_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
