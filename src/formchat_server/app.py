"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that wires the queue, gateway, engine and worker once,
    and starts/stops the worker when ``SERVER_RUN_WORKER`` is on
  - CORS middleware
  - Global exception handlers (infrastructure → 503, engine data → 422)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness checks

The ``cli()`` function is the ``formchat-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sqlalchemy
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from formchat_db.engine import dispose_engine, get_engine, get_session_factory
from formchat_engine.engine import SessionEngine
from formchat_engine.errors import FormchatError, InfrastructureError
from formchat_engine.gateway import WhatsAppClient, load_whatsapp_settings
from formchat_engine.interfaces import MessageGateway, MessageQueue
from formchat_engine.queue import InMemoryMessageQueue, RedisMessageQueue
from formchat_engine.worker import QueueWorker

from formchat_server.config import ServerSettings, load_settings
from formchat_server.errors import (
    formchat_error_handler,
    generic_error_handler,
    infrastructure_error_handler,
    value_error_handler,
)
from formchat_server.routes import register_routes

logger = logging.getLogger(__name__)


def build_queue(settings: ServerSettings) -> MessageQueue:
    """Redis queue when ``REDIS_URL`` is set, else the in-process one."""
    if settings.redis_url:
        return RedisMessageQueue.from_url(settings.redis_url)
    logger.warning("REDIS_URL=memory: using the non-durable in-memory queue")
    return InMemoryMessageQueue()


# ------------------------------------------------------------------
# Lifespan: runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Build the inbound queue and the WhatsApp gateway (unless a test
         already placed them on ``app.state``)
      2. Build ``SessionEngine`` and ``QueueWorker``
      3. Start the worker if this process is configured to run it

    Shutdown:
      1. Stop the worker after its in-flight message
      2. Close the gateway and queue connections
      3. Dispose the database engine's connection pool
    """
    settings: ServerSettings = app.state.settings

    queue: MessageQueue = getattr(app.state, "queue", None) or build_queue(settings)
    gateway: MessageGateway = getattr(app.state, "gateway", None) or WhatsAppClient(
        load_whatsapp_settings()
    )
    engine = SessionEngine(gateway)
    worker = QueueWorker(queue, engine, get_session_factory())

    app.state.queue = queue
    app.state.gateway = gateway
    app.state.worker = worker

    if settings.run_worker:
        await worker.start()
    else:
        logger.info("Queue worker disabled in this process (SERVER_RUN_WORKER=0)")

    yield

    # --- Shutdown ---
    await worker.stop()
    await gateway.close()
    await queue.close()
    await dispose_engine()
    logger.info("Queue, gateway and database engine closed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Formchat API Server",
        description="WhatsApp webhook, queue administration and session inspection "
        "for conversational forms",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(InfrastructureError, infrastructure_error_handler)
    app.add_exception_handler(RedisError, infrastructure_error_handler)
    app.add_exception_handler(FormchatError, formchat_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness check: verifies DB and queue connectivity."""
        checks: dict[str, str] = {}
        try:
            async with get_engine().connect() as conn:
                await conn.execute(sqlalchemy.text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as exc:
            logger.error("Health check (database) failed: %s", exc)
            checks["database"] = "error"

        queue: MessageQueue | None = getattr(app.state, "queue", None)
        checks["queue"] = "ok" if queue is not None and await queue.ping() else "error"

        worker: QueueWorker | None = getattr(app.state, "worker", None)
        checks["worker"] = "running" if worker is not None and worker.is_running else "stopped"

        healthy = checks["database"] == "ok" and checks["queue"] == "ok"
        return {"status": "ok" if healthy else "error", **checks}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn formchat_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``formchat-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "formchat_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
