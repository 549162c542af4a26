"""Retention sweep CLI — ``auq-cleanup``.

Removes sessions whose last activity is older than the retention window.
Intended for cron jobs or one-off maintenance; the server also runs one
sweep at startup.

Examples::

    # Use the configured retention period (default 7 days)
    auq-cleanup

    # Remove sessions idle for more than one day
    auq-cleanup --days 1

    # Sweep a specific session directory
    AUQ_SESSION_DIR=/tmp/auq auq-cleanup --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace

from auq_sessions.config import SessionSettings, load_settings
from auq_sessions.store import SessionStore

logger = logging.getLogger(__name__)


async def run_cleanup(settings: SessionSettings, *, days: float | None = None) -> int:
    """Run one retention sweep and return the number of sessions removed.

    ``days`` overrides the configured retention period; 0 disables removal.
    """
    if days is not None:
        settings = replace(settings, retention_period=days * 24 * 60 * 60)

    store = SessionStore(settings)
    await store.initialize()
    removed = await store.cleanup_expired_sessions()

    logger.info(
        "Cleanup complete: removed=%d, retention=%gs, dir=%s",
        removed, settings.retention_period, settings.base_dir,
    )
    return removed


def cli() -> None:
    """Console-script entry point: ``auq-cleanup``."""
    settings = load_settings()

    parser = argparse.ArgumentParser(
        prog="auq-cleanup",
        description="Remove expired question sessions from the session directory.",
    )
    parser.add_argument(
        "--days",
        type=float,
        default=None,
        help=(
            "Retention window in days (default: $AUQ_RETENTION_DAYS or the "
            "config file's retentionPeriod, else 7). 0 disables cleanup."
        ),
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: $AUQ_LOG_LEVEL or INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    removed = asyncio.run(run_cleanup(settings, days=args.days))

    print(f"Removed sessions: {removed}")
    sys.exit(0)
