"""Logging setup driven by the ``logging`` config section.

docbranch runs inside a host process, so handlers go on the ``docbranch``
package logger rather than the root logger.  Records still propagate to
whatever the host has configured.  Calling ``configure_logging`` again
replaces the handlers installed by the previous call.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from .config_schema import LoggingConfig

PACKAGE_LOGGER = "docbranch"
NOISY_LOGGERS = ("chromadb", "httpx", "urllib3")

_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_OWNED = "_docbranch_handler"


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts (UTC, ISO 8601), level, logger, msg.

    Exception text goes in ``exc`` when the record carries one.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def resolve_level(name: str | None, debug: bool = False) -> int:
    """Level number for *name*; ``DOCBRANCH_LOG_LEVEL`` overrides it.

    Raises:
        ValueError: If the level name is unknown.
    """
    if debug:
        return logging.DEBUG
    raw = os.getenv("DOCBRANCH_LOG_LEVEL") or name or "INFO"
    level = logging.getLevelName(raw.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {raw}")
    return level


def _formatter(kind: str) -> logging.Formatter:
    if kind == "json":
        return JsonFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def configure_logging(
    settings: LoggingConfig | None = None,
    debug: bool = False,
    console: bool | None = None,
) -> logging.Logger:
    """Install docbranch handlers from *settings*.

    Args:
        settings: The ``logging`` config section; defaults when omitted.
        debug: Force DEBUG and leave third-party loggers unfiltered.
        console: Add a stderr handler.  By default one is added only
            when the root logger has no handlers of its own.

    Returns:
        The configured ``docbranch`` logger.
    """
    settings = settings or LoggingConfig()
    level = resolve_level(settings.level, debug)
    package = logging.getLogger(PACKAGE_LOGGER)

    for handler in [h for h in package.handlers if getattr(h, _OWNED, False)]:
        package.removeHandler(handler)
        handler.close()

    if console is None:
        console = not logging.getLogger().handlers

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if settings.file:
        path = Path(settings.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))

    formatter = _formatter(settings.format)
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _OWNED, True)
        package.addHandler(handler)
    package.setLevel(level)

    if level != logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return package
