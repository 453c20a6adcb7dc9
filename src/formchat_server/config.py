"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
"""

import os
from dataclasses import dataclass, field

# Module-level constants read at import time so FastAPI Query() defaults
# can reference them (Query defaults must be static at decoration time).
DEFAULT_DEAD_LETTER_LIMIT = int(os.getenv("DEFAULT_DEAD_LETTER_LIMIT", "50"))
MAX_DEAD_LETTER_LIMIT = int(os.getenv("MAX_DEAD_LETTER_LIMIT", "500"))
DEFAULT_ABANDON_DAYS = int(os.getenv("DEFAULT_ABANDON_DAYS", "7"))


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # "production" disables the message simulation endpoint
    env: str = "development"

    # CORS: comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    # Admin API key: shared secret for queue/session endpoints (None = disabled)
    admin_api_key: str | None = None

    # WhatsApp webhook: HMAC secret for X-Hub-Signature-256 and the
    # verify token echoed during the subscription handshake
    webhook_secret: str | None = None
    webhook_verify_token: str | None = None

    # Queue backend: a Redis URL, or None for the in-memory queue
    redis_url: str | None = "redis://localhost:6379/0"

    # Run the queue worker inside the API process
    run_worker: bool = True

    @property
    def is_production(self) -> bool:
        return self.env == "production"


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and related environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    # REDIS_URL=memory selects the in-process queue
    if redis_url.strip().lower() in ("", "memory"):
        redis_url = None

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        env=os.getenv("SERVER_ENV", "development").lower(),
        cors_origins=origins,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        webhook_secret=os.getenv("WHATSAPP_WEBHOOK_SECRET") or None,
        webhook_verify_token=os.getenv("WHATSAPP_WEBHOOK_TOKEN") or None,
        redis_url=redis_url,
        run_worker=os.getenv("SERVER_RUN_WORKER", "1") == "1",
    )
