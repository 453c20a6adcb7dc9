"""Route registration — mounts all routers under ``/api/v1``."""

from fastapi import FastAPI

from formchat_server.routes.queue import router as queue_router
from formchat_server.routes.sessions import router as sessions_router
from formchat_server.routes.simulate import router as simulate_router
from formchat_server.routes.webhook import router as webhook_router

API_PREFIX = "/api/v1"


def register_routes(app: FastAPI) -> None:
    """Include all sub-routers under the versioned API prefix."""
    app.include_router(webhook_router, prefix=API_PREFIX)
    app.include_router(queue_router, prefix=API_PREFIX)
    app.include_router(sessions_router, prefix=API_PREFIX)
    app.include_router(simulate_router, prefix=API_PREFIX)
