"""
Logging setup for the import engine.

Engine modules log through ``logging.getLogger(__name__)`` under the
``intake`` namespace; ``configure_logging`` installs one stdout handler on
the root logger and quiets the chatty third-party and per-value loggers.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Dict, Optional

from intake.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# Loggers that emit per statement or per cell; they stay at WARNING unless
# the engine itself runs at DEBUG.
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "intake.domain.imports.parsers",
)

_is_configured = False


def _logger_levels(log_level: str) -> Dict[str, Dict[str, str]]:
    quiet_level = "DEBUG" if log_level == "DEBUG" else "WARNING"
    levels = {"intake": {"level": log_level}}
    for name in NOISY_LOGGERS:
        levels[name] = {"level": quiet_level}
    return levels


def configure_logging(level: Optional[str] = None, force: bool = False) -> None:
    """
    Configure the root and engine loggers once per process.

    Args:
        level: Log level override; defaults to ``settings.log_level``.
        force: Reconfigure even when logging was already set up.
    """
    global _is_configured

    if _is_configured and not force:
        return

    log_level = (level or settings.log_level).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "stream": "ext://sys.stdout",
                    "level": log_level,
                }
            },
            "loggers": _logger_levels(log_level),
            "root": {"handlers": ["console"], "level": log_level},
        }
    )

    _is_configured = True
