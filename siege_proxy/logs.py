from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, IO, Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "siege_proxy"
TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

LEVELS: Dict[str, int] = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}


def parse_level(name: str) -> int:
    """
    Map a level name to a logging level; unknown names fall back to INFO.
    """
    return LEVELS.get(str(name).strip().lower(), logging.INFO)


class ContextFormatter(logging.Formatter):
    """Appends ``key=value`` pairs passed via ``extra`` to the message."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = record_context(record)
        if not context:
            return text
        pairs = " ".join(f"{k}={v}" for k, v in context.items())
        return f"{text} {pairs}"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def build_handler(fmt: str = "text", color: bool = False, stream: Optional[IO[str]] = None) -> logging.Handler:
    stream = stream or sys.stdout
    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonFormatter())
    elif color:
        handler = RichHandler(
            console=Console(file=stream, force_terminal=True),
            show_path=False,
            markup=False,
        )
        handler.setFormatter(ContextFormatter("%(message)s"))
    else:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(ContextFormatter(TEXT_FORMAT))
    return handler


def setup_logging(
    level: str = "info", fmt: str = "text", color: bool = False, stream: Optional[IO[str]] = None
) -> logging.Logger:
    """
    Configure the package logger once; later calls replace the handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(build_handler(fmt, color, stream))
    logger.setLevel(parse_level(level))
    # mitmproxy owns the root logger
    logger.propagate = False
    return logger
