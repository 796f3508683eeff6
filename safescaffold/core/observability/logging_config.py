"""
Logging configuration — set up once by the CLI entrypoint.

Every module does ``logger = logging.getLogger(__name__)`` and inherits
this config. Library code never configures logging itself.

Levels are resolved in precedence order:
    CLI flag  >  SCAFFOLD_LOG_LEVEL env var  >  WARNING (default)

Optional file output via SCAFFOLD_LOG_FILE / SCAFFOLD_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LEVEL = "SCAFFOLD_LOG_LEVEL"
ENV_FILE = "SCAFFOLD_LOG_FILE"
ENV_FILE_LEVEL = "SCAFFOLD_LOG_FILE_LEVEL"

# ── Formats ─────────────────────────────────────────────────────────

# (format, datefmt) per console threshold, most verbose first
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
)
_CONSOLE_DEFAULT = "%(levelname)s: %(message)s"

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Held at WARNING unless the console runs at DEBUG
_NOISY_LOGGERS = ("concurrent.futures", "asyncio")


def resolve_level(cli_level: str | None = None) -> str:
    """CLI flag, else the environment, else WARNING."""
    return cli_level or os.environ.get(ENV_LEVEL) or "WARNING"


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT, None
    for threshold, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            fmt, datefmt = candidate, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install the process-wide handlers, replacing any existing ones.

    Args:
        level: Console level name.
        log_file: Also log to this file. Falls back to SCAFFOLD_LOG_FILE.
        log_file_level: File level; falls back to SCAFFOLD_LOG_FILE_LEVEL,
            then ``level``.
        quiet_third_party: Hold stdlib loggers such as concurrent.futures
            at WARNING unless the console is at DEBUG.
    """
    console_level = _parse_level(level)
    log_file = log_file or os.environ.get(ENV_FILE) or None
    log_file_level = log_file_level or os.environ.get(ENV_FILE_LEVEL) or None

    handlers = [_console_handler(console_level)]
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(log_file, file_level))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # Root must let through whatever the most verbose handler wants
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric constant; unknown names mean WARNING."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
