"""Logging configuration for PathMon."""

import logging
import os
import sys

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def resolve_log_level(name: str | None) -> int:
    """Map a level name to a logging constant (unknown names give INFO)."""
    return LOG_LEVELS.get((name or "INFO").strip().upper(), logging.INFO)


def configure_logging(level: str | None = None) -> None:
    """Configure application-wide logging to stderr.

    The level comes from the argument, then PATHMON_LOG_LEVEL, then INFO.
    The asyncio logger stays at WARNING unless DEBUG is requested.

    Examples:
        # Per-probe details
        $ PATHMON_LOG_LEVEL=DEBUG python -m pathmon

        # Faults and fallbacks only
        $ PATHMON_LOG_LEVEL=WARNING python -m pathmon
    """
    log_level = resolve_log_level(level or os.environ.get("PATHMON_LOG_LEVEL"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,  # Override any existing configuration
    )
    logging.getLogger("asyncio").setLevel(
        logging.DEBUG if log_level == logging.DEBUG else logging.WARNING
    )

    logger = logging.getLogger(__name__)
    logger.info("Logging configured: level=%s", logging.getLevelName(log_level))
