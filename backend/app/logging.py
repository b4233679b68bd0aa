"""Shared structlog configuration and secret redaction helpers."""

from __future__ import annotations

import logging
import sys
from typing import IO
from urllib.parse import urlsplit

import structlog

from app.config import Settings, settings

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class _TeeWriter:
    """Write to both stdout and a log file (JSON lines).

    If the file cannot be opened or a write fails, logging continues on
    stdout only.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet at this point
            print(
                f"WARNING: Could not open log file {file_path!r}: {exc}. "
                "Falling back to stdout-only logging.",
                file=sys.stderr,
            )

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._disable()

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is None:
            return
        try:
            self._file.flush()
        except (OSError, ValueError):
            self._disable()

    def _disable(self) -> None:
        self._file = None
        print("WARNING: Log file write failed. File logging disabled.", file=sys.stderr)


def redact(value: str) -> str:
    """Hide a secret while keeping enough of it to tell values apart.

    URLs keep only their host (credentials and path dropped); short values
    become ``***``; anything else keeps its first and last two characters.
    """
    if not value:
        return value
    parts = urlsplit(value)
    if parts.scheme and parts.hostname:
        return f"***@{parts.hostname}"
    if len(value) <= 6:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def mask_settings(cfg: Settings) -> dict[str, str]:
    """Summarize secret-bearing settings as set/unset or redacted values."""
    return {
        "DECOR8_BASE_URL": "stub"
        if cfg.decor8_base_url.startswith("stub")
        else cfg.decor8_base_url or "unset",
        "DECOR8_API_KEY": "set" if cfg.decor8_api_key else "unset",
        "DATABASE_URL": redact(cfg.database_url) if cfg.use_database else "unused",
    }


def configure_logging(cfg: Settings = settings) -> None:
    """Configure structlog with console renderer in dev, JSON elsewhere.

    When LOG_FILE is set, logs go to both stdout and that file.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if cfg.environment == "development"
        else structlog.processors.JSONRenderer()
    )

    level = _LOG_LEVEL_MAP.get(cfg.log_level.upper(), logging.INFO)

    logger_factory: structlog.types.WrappedLogger
    if cfg.log_file:
        logger_factory = structlog.PrintLoggerFactory(file=_TeeWriter(cfg.log_file))  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
