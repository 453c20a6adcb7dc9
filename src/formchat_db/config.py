"""Database configuration — connection and pool settings from the environment.

``DATABASE_URL`` wins when set; otherwise the URL is assembled from
``PG_HOST``, ``PG_PORT``, ``PG_USER``, ``PG_PASSWORD`` and ``PG_DATABASE``
(the docker-compose style).  Credentials are passed through
``sqlalchemy.engine.URL.create`` so passwords containing ``@`` or ``/`` need
no manual escaping.

Two drivers read the same settings: Alembic migrations run synchronously on
psycopg2, the application runs on asyncpg.
"""

import os
from dataclasses import dataclass

from sqlalchemy.engine import URL, make_url

_SYNC_DRIVER = "postgresql"
_ASYNC_DRIVER = "postgresql+asyncpg"


@dataclass(frozen=True)
class DatabaseSettings:
    """Immutable database settings read once per process."""

    url: str | None = None
    host: str = "localhost"
    port: int = 5432
    user: str = "formchat"
    password: str = "formchat"
    database: str = "formchat"

    # Pool sizing; the worker holds one connection at a time, so the pool
    # mainly serves concurrent HTTP requests.
    pool_size: int = 5
    max_overflow: int = 10
    # Seconds to wait for a pooled connection before failing the message
    pool_timeout: float = 10.0

    def _url(self, driver: str) -> URL:
        if self.url:
            return make_url(self.url).set(drivername=driver)
        return URL.create(
            drivername=driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    @property
    def sync_url(self) -> str:
        return self._url(_SYNC_DRIVER).render_as_string(hide_password=False)

    @property
    def async_url(self) -> str:
        return self._url(_ASYNC_DRIVER).render_as_string(hide_password=False)


def load_database_settings() -> DatabaseSettings:
    """Build ``DatabaseSettings`` from ``DATABASE_URL`` / ``PG_*`` variables."""
    return DatabaseSettings(
        url=os.getenv("DATABASE_URL") or None,
        host=os.getenv("PG_HOST", "localhost"),
        port=int(os.getenv("PG_PORT", "5432")),
        user=os.getenv("PG_USER", "formchat"),
        password=os.getenv("PG_PASSWORD", "formchat"),
        database=os.getenv("PG_DATABASE", "formchat"),
        pool_size=int(os.getenv("PG_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("PG_MAX_OVERFLOW", "10")),
        pool_timeout=float(os.getenv("PG_POOL_TIMEOUT", "10")),
    )


def get_sync_url() -> str:
    """Synchronous (psycopg2) URL, used by Alembic."""
    return load_database_settings().sync_url


def get_async_url() -> str:
    """asyncpg URL for the runtime engine."""
    return load_database_settings().async_url
