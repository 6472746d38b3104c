"""structlog setup shared by the API process and the Temporal worker.

Lines carry the service name and environment so API and worker output can be
told apart once both ship to the same sink. Development gets the coloured
console renderer; everything else gets one JSON object per line.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

from concierge.config import Settings, settings

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "temporalio.activity", "temporalio.worker")


def resolve_level(name: str) -> int:
    """Map a LOG_LEVEL string to a stdlib level; unknown names mean INFO."""
    return logging.getLevelNamesMapping().get(name.strip().upper(), logging.INFO)


class _TeeWriter:
    """File-like sink writing to stdout and appending to a JSON lines file.

    The file side switches itself off on the first I/O error; stdout output
    continues regardless.
    """

    def __init__(self, file_path: str) -> None:
        self._path = file_path
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet at this point
            self._warn(f"Could not open log file {file_path!r}: {exc}. Using stdout only.")

    @staticmethod
    def _warn(message: str) -> None:
        print(f"WARNING: {message}", file=sys.stderr)

    def _file_op(self, op: str, *args: Any) -> None:
        if self._file is None:
            return
        try:
            getattr(self._file, op)(*args)
        except (OSError, ValueError):
            self._file = None
            self._warn(f"Log file {op} failed for {self._path!r}. File logging disabled.")

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        self._file_op("write", data)
        self._file_op("flush")

    def flush(self) -> None:
        sys.stdout.flush()
        self._file_op("flush")


def _service_fields(config: Settings) -> structlog.types.Processor:
    def add_service(_logger: Any, _method: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", config.app_name.lower())
        event_dict.setdefault("env", config.environment)
        return event_dict

    return add_service


def configure_logging(config: Settings | None = None) -> None:
    """Configure structlog from settings. LOG_FILE additionally tees every line."""
    config = config or settings
    level = resolve_level(config.log_level)

    renderer: structlog.types.Processor
    if config.environment == "development":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    sink = _TeeWriter(config.log_file) if config.log_file else None

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_fields(config),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        # PrintLoggerFactory only needs write() and flush()
        logger_factory=structlog.PrintLoggerFactory(file=sink),  # type: ignore[arg-type]
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
