"""
FastAPI application entry point for the Kepka token platform.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from kepka.config import Settings, get_settings
from kepka.dependencies import Services, authenticate, build_services
from kepka.errors import ApiError, install_error_handlers
from kepka.notifications import channel_name
from kepka.routes import router
from kepka.schemas import HealthResponse

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.start()
        try:
            yield
        finally:
            services.stop()

    app = FastAPI(title="Kepka Backend (FastAPI)", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app, settings)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        database = services.db.ping()
        return HealthResponse(
            status="ok" if database else "degraded",
            database=database,
            environment=settings.environment,
        )

    @app.websocket(f"{settings.api_prefix}/ws")
    async def realtime(websocket: WebSocket, token: Optional[str] = None):
        try:
            user = await run_in_threadpool(
                authenticate, websocket.app.state.services, token or ""
            )
        except ApiError as exc:
            await websocket.close(code=1008, reason=exc.message)
            return
        broadcaster = websocket.app.state.services.broadcaster
        subscription = broadcaster.subscribe(user.id)
        await websocket.accept()
        logger.info("WebSocket connected on %s", channel_name(user.id))

        async def forward() -> None:
            while True:
                message = await subscription.queue.get()
                await websocket.send_json(message)

        async def receive() -> None:
            while True:
                text = await websocket.receive_text()
                if text == "ping":
                    await websocket.send_text("pong")

        tasks = [asyncio.create_task(forward()), asyncio.create_task(receive())]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("WebSocket on %s closed: %s", channel_name(user.id), exc)
        finally:
            for task in tasks:
                task.cancel()
            broadcaster.unsubscribe(subscription)
            logger.info("WebSocket disconnected from %s", channel_name(user.id))

    return app


app = create_app()
