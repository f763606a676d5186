"""Logging configuration shared by the API and the maintenance scripts."""
from __future__ import annotations
import logging
from logging.config import dictConfig

from config import LOG_LEVEL


def _dict_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s:%(name)s:%(message)s"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            "uvicorn": {"level": level, "handlers": ["console"], "propagate": False},
            "uvicorn.error": {"level": level, "handlers": ["console"], "propagate": False},
            "uvicorn.access": {"level": level, "handlers": ["console"], "propagate": False},
        },
    }


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once.

    Returns early when the root logger already has handlers so reloads
    (and pytest's log capture) don't get duplicate output.
    """
    if logging.getLogger().handlers:
        return
    dictConfig(_dict_config(level or LOG_LEVEL))
