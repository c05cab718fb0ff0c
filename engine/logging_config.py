"""Structured logging configuration for the Music Box engine.

Log lines are flat ``key=value`` records so they can be grepped or shipped to
a collector without a parser. Engine code adds context through ``extra``:

    logger.info("Chord changed", extra={"chord": "C-E-G", "voice_count": 4})
"""

import logging
import sys
from typing import Any, Optional

from engine.config import get_config

EXTRA_FIELDS = ("latency_ms", "voice_count", "chord")

PACKAGE_LOGGERS = ("engine", "composition")

# Third-party loggers and the most verbose level we let through
LIBRARY_LEVELS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "fastapi": logging.INFO,
    "asyncio": logging.WARNING,
}


class StructuredFormatter(logging.Formatter):
    """Render a record as space separated ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        fields.update({name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)})

        if record.exc_info:
            fields["exc"] = self.formatException(record.exc_info)

        return " ".join(f"{key}={value}" for key, value in fields.items())


def setup_logging(level: Optional[str] = None) -> None:
    """Install the structured stdout handler on the root logger.

    Args:
        level: Level name for the engine and composition loggers, defaults to
            ``MusicBoxConfig.log_level``
    """
    log_level = logging.getLevelName(level or get_config().log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(log_level)
