"""
Logging Configuration

stdout logging for the API process and the CLI script.

Pipeline modules log through ``logging.getLogger(__name__)`` under the
``repochat`` namespace. Chatty third-party clients (HTTP, SQL, model
loading) are held at WARNING so ingestion progress stays readable.
"""

import sys
from logging.config import dictConfig
from typing import Any

from repochat.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Logged at WARNING regardless of LOG_LEVEL
QUIET_LOGGERS: tuple[str, ...] = (
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "openai",
    "sentence_transformers",
)


def _isolated(level: str) -> dict[str, Any]:
    return {"level": level, "handlers": ["console"], "propagate": False}


def setup_logging(level: str | None = None) -> None:
    """
    Apply the logging configuration.

    Args:
        level: Overrides ``LOG_LEVEL`` (the CLI's ``--log-level``).

    Call once per process: at import of ``repochat.main`` or in a
    script's ``main()``.
    """
    log_level = (level or settings.LOG_LEVEL).upper()

    loggers = {name: _isolated("WARNING") for name in QUIET_LOGGERS}
    loggers["repochat"] = _isolated(log_level)
    loggers["uvicorn"] = _isolated("INFO")
    loggers["uvicorn.access"] = _isolated("INFO")

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "default",
                },
            },
            "root": {"level": log_level, "handlers": ["console"]},
            "loggers": loggers,
        }
    )
