"""
Logging configuration — central setup for the CLI entrypoint.

Called once at startup by main.py. Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Console levels are resolved in precedence order:
    --verbose flag  >  KUSTOBOOT_LOG_LEVEL env var  >  caller default

The deploy command always adds a file handler next to the checkpoint,
at DEBUG, so a resumed run after a reboot keeps appending to the same log.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# ── Format strings ──────────────────────────────────────────────

# WARNING level — minimal, no noise
_FMT_MINIMAL = "%(message)s"

# INFO level — timestamped, operator-facing
_FMT_VERBOSE = "%(asctime)s %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level — full diagnostic with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output — always full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s [pid %(process)d] %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are noisy at INFO/DEBUG
_NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def setup_logging(
    level: str = "WARNING",
    log_file: str | Path | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file (appended to).
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
        quiet_third_party: If True, keep noisy third-party loggers at WARNING
            unless we're at DEBUG level.
    """
    numeric_level = _parse_level(level)

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console)

    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        path = Path(log_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            root.warning("Cannot open log file %s: %s", path, e)
        else:
            fh.setLevel(file_level)
            fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
            root.addHandler(fh)

    root.setLevel(effective_level)

    # ── Third-party noise control ───────────────────────────────
    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # Don't propagate exceptions from logging itself
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
