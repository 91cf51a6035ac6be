"""
Logging setup for the Liberdus client.

Every module logs through ``logging.getLogger("liberdus_<area>")``; the
area (``sync``, ``gateway``, ``cipher``, ...) is what the formatters show
and what per-area level overrides address:

    setup_logging(level="INFO", areas={"sync": "DEBUG"})

Console output is either ``human`` (one line, coloured on a terminal) or
``json`` (one object per line).  A log file, when configured, is always
JSON.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

LOGGER_PREFIX = "liberdus_"

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}
_RESET = "\033[0m"


def area_of(logger_name: str) -> str:
    """``liberdus_sync`` -> ``sync``; foreign loggers keep their full name."""
    if logger_name.startswith(LOGGER_PREFIX):
        return logger_name[len(LOGGER_PREFIX):]
    return logger_name


def parse_level(name: str | int) -> int:
    """Level number for *name*.  Raises ValueError on an unknown level."""
    if isinstance(name, int):
        return name
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {name!r}")
    return level


def parse_areas(spec: str) -> dict[str, str]:
    """Parse ``"sync=debug,gateway=warning"`` into an area -> level map."""
    areas: dict[str, str] = {}
    for item in spec.split(","):
        if not item.strip():
            continue
        area, sep, level = item.partition("=")
        if not sep or not area.strip():
            raise ValueError(f"expected area=level, got {item.strip()!r}")
        areas[area_of(area.strip())] = level.strip().upper()
    return areas


class _JSONFormatter(logging.Formatter):
    """One JSON object per record, keyed for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "area": area_of(record.name),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _HumanFormatter(logging.Formatter):
    """``12:00:01 WARNING sync: message`` with the level coloured on a TTY."""

    def __init__(self, colour: bool = False):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.colour:
            level = f"{_LEVEL_COLOURS.get(record.levelno, '')}{level}{_RESET}"
        text = f"{stamp} {level} {area_of(record.name)}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _console_handler(fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JSONFormatter())
    elif fmt == "human":
        handler.setFormatter(_HumanFormatter(colour=sys.stderr.isatty()))
    else:
        raise ValueError(f"unknown log format: {fmt!r} (expected 'human' or 'json')")
    return handler


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(_JSONFormatter())
    return handler


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
    areas: Optional[Mapping[str, str]] = None,
) -> None:
    """
    Install the client's handlers on the root logger.

    Calling it again replaces the handlers installed earlier.  *areas*
    maps an area (``"sync"``) or full logger name (``"liberdus_sync"``)
    to its own level.  aiohttp is capped at WARNING unless the root level
    is stricter.  Raises ValueError on an unknown level or format.
    """
    root_level = parse_level(level)
    handlers = [_console_handler(fmt)]
    if log_file:
        handlers.append(_file_handler(log_file))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)

    for area, area_level in (areas or {}).items():
        logging.getLogger(LOGGER_PREFIX + area_of(area)).setLevel(parse_level(area_level))
    logging.getLogger("aiohttp").setLevel(max(root_level, logging.WARNING))
