"""Standalone queue worker — ``formchat-worker``.

Runs the same ``QueueWorker`` the API process can host, for deployments
that scale ingestion (webhook) and processing separately.  Run exactly one
instance per queue: the session engine relies on a single consumer.

Examples::

    # Drain the Redis queue until SIGINT/SIGTERM
    uv run formchat-worker

    # Faster polling while debugging
    uv run formchat-worker --poll-interval 0.5 --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from formchat_engine.constants import POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


async def run_worker(*, poll_interval: float = POLL_INTERVAL_SECONDS) -> None:
    """Build the worker, run it until a stop signal, then shut down cleanly."""
    # Lazy imports to avoid loading DB machinery at module import time
    from formchat_db.engine import dispose_engine, get_session_factory
    from formchat_engine.engine import SessionEngine
    from formchat_engine.gateway import WhatsAppClient, load_whatsapp_settings
    from formchat_engine.worker import QueueWorker

    from formchat_server.app import build_queue
    from formchat_server.config import load_settings

    settings = load_settings()
    queue = build_queue(settings)
    gateway = WhatsAppClient(load_whatsapp_settings())
    worker = QueueWorker(
        queue,
        SessionEngine(gateway),
        get_session_factory(),
        poll_interval=poll_interval,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    await worker.start()
    try:
        await stop.wait()
    finally:
        await worker.stop()
        await gateway.close()
        await queue.close()
        await dispose_engine()
        logger.info("Worker shut down")


def cli() -> None:
    """Console-script entry point: ``formchat-worker``."""
    parser = argparse.ArgumentParser(
        prog="formchat-worker",
        description="Process queued WhatsApp messages through the session engine.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=POLL_INTERVAL_SECONDS,
        help="Seconds to sleep when the queue is empty (default: $WORKER_POLL_INTERVAL or 2)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    asyncio.run(run_worker(poll_interval=args.poll_interval))
