"""``formchat-abandon``: close out idle form sessions.

An in-progress session whose last activity is older than the threshold is
moved to ``abandoned``.  The (form, respondent) pair is then free, so the
next ``START:<key>`` from that respondent opens a new session instead of
resuming the stale one.  Run it from cron or by hand::

    uv run formchat-abandon              # idle > $DEFAULT_ABANDON_DAYS (7)
    uv run formchat-abandon --days 30
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from formchat_server.config import DEFAULT_ABANDON_DAYS

logger = logging.getLogger(__name__)


async def run_abandon(
    *,
    days: int = DEFAULT_ABANDON_DAYS,
    session_repo=None,
    session_factory=None,
) -> int:
    """Abandon sessions idle for more than ``days`` days; return the count.

    Without explicit collaborators the process-wide engine is used and
    disposed afterwards.
    """
    owns_engine = session_factory is None
    if session_repo is None:
        from formchat_db.repository import SessionRepository

        session_repo = SessionRepository()
    if owns_engine:
        from formchat_db.engine import get_session_factory

        session_factory = get_session_factory()

    try:
        async with session_factory() as db:
            affected = await session_repo.abandon_stale_sessions(db, older_than_days=days)
            await db.commit()
    finally:
        if owns_engine:
            from formchat_db.engine import dispose_engine

            await dispose_engine()

    logger.info("Abandoned %d session(s) idle for more than %d day(s)", affected, days)
    return affected


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="formchat-abandon",
        description="Mark idle in-progress form sessions as abandoned.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_ABANDON_DAYS,
        help=f"Idle threshold in days (default: {DEFAULT_ABANDON_DAYS})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def cli(argv: list[str] | None = None) -> None:
    """Console-script entry point: ``formchat-abandon``."""
    parser = _parser()
    args = parser.parse_args(argv)
    if args.days < 0:
        parser.error("--days must be >= 0")

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    affected = asyncio.run(run_abandon(days=args.days))
    print(f"Abandoned sessions: {affected}")
