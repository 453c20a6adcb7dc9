"""FastAPI dependency injection — provides DB sessions, the queue, the worker,
and the admin-key guard.

Each request that touches the database gets a fresh ``AsyncSession`` via
``get_db()``.  The session is committed on success and rolled back on error,
matching the SDK convention where engine/repository call ``flush()`` but
never ``commit()``.
"""

import hmac
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from formchat_db.engine import get_session_factory
from formchat_engine.interfaces import MessageQueue
from formchat_engine.worker import QueueWorker

from formchat_server.config import ServerSettings


# ------------------------------------------------------------------
# Database session
# ------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ------------------------------------------------------------------
# Queue, worker & settings: stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_settings(request: Request) -> ServerSettings:
    return request.app.state.settings


def get_queue(request: Request) -> MessageQueue:
    """Return the inbound queue singleton from ``app.state``."""
    return request.app.state.queue


def get_worker(request: Request) -> QueueWorker:
    """Return the queue worker from ``app.state``.

    The worker object exists even when it is not running in this process
    (``SERVER_RUN_WORKER=0``) so stats and replay keep working.
    """
    return request.app.state.worker


# ------------------------------------------------------------------
# Admin guard: X-Admin-Key header
# ------------------------------------------------------------------

async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate the ``X-Admin-Key`` header against ``ADMIN_API_KEY``.

    Raises 403 if admin endpoints are not configured or the key does not
    match, 401 if the header is missing.
    """
    expected: str | None = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    # Bytes: compare_digest rejects non-ASCII str with TypeError
    if not hmac.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_admin_key
