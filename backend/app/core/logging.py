"""
Application logging.

Console output is always on. In production two JSON sinks are added under
LOG_FILE_PATH: `application-<date>.log` (everything at the configured level)
and `error-<date>.log` (ERROR and above). Both start a new file per day, archive
and gzip a file once it would grow past 20 MB, and prune archives older than
14 days.

Callers use `AppLogger` instead of a bare `logging.Logger` so structured fields
(`context`, request data, ...) are carried the same way everywhere.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import re
import shutil
import sys
from collections.abc import Callable, Mapping
from contextlib import suppress
from datetime import date, datetime, timedelta, timezone
from logging.handlers import BaseRotatingHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

from app.core.config import Settings

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response


APP_LOGGER_NAME = "app"

VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")

MAX_LOG_FILE_BYTES = 20 * 1024 * 1024
LOG_RETENTION_DAYS = 14

LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "verbose": VERBOSE,
    "debug": logging.DEBUG,
}

_COLOURS = {
    "DEBUG": "\033[34m",
    "VERBOSE": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1m\033[31m",
}
_COLOUR_END = "\033[0m"


def level_from_name(level: str | int) -> int:
    if isinstance(level, int):
        return level
    if not isinstance(level, str):
        raise ValueError(f"Unknown log level: {level!r}")
    try:
        return LEVELS[level.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None


def _record_meta(record: logging.LogRecord) -> dict[str, Any]:
    meta = getattr(record, "meta", None)
    if not isinstance(meta, Mapping):
        return {}
    return {str(k): v for k, v in meta.items() if v is not None}


class ConsoleFormatter(logging.Formatter):
    """`<timestamp> [<level>]: <message> <meta as json>`, level coloured."""

    def __init__(self, *, colors: bool = True) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")
        self.colors = colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = record.levelname.lower()
        if self.colors:
            level = f"{_COLOURS.get(record.levelname, '')}{level}{_COLOUR_END}"

        line = f"{timestamp} [{level}]: {record.getMessage()}"
        meta = _record_meta(record)
        if meta:
            line = f"{line} {json.dumps(meta, indent=2, default=str)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_meta(record))
        if record.exc_info:
            payload["stack"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


class DailyRotatingFileHandler(BaseRotatingHandler):
    """
    File sink named `<prefix>-YYYY-MM-DD.log`.

    Rolls over when the calendar day changes or when the next record would push
    the active file past `max_bytes`. Size rollovers inside one day archive the
    active file as `<prefix>-<date>.<n>.log`. With `compress` set every archived
    file is gzipped. Files dated more than `retention_days` ago are removed on
    each rollover.
    """

    def __init__(
        self,
        directory: str | os.PathLike[str],
        prefix: str,
        *,
        max_bytes: int = MAX_LOG_FILE_BYTES,
        retention_days: int = LOG_RETENTION_DAYS,
        compress: bool = True,
        encoding: str = "utf-8",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.max_bytes = max_bytes
        self.retention_days = retention_days
        self.clock = clock
        self.current_day = self._today()
        self._dated_name = re.compile(
            rf"^{re.escape(prefix)}-(\d{{4}}-\d{{2}}-\d{{2}})(?:\.\d+)?\.log(?:\.gz)?$"
        )
        super().__init__(str(self.path_for(self.current_day)), "a", encoding=encoding, delay=True)
        if compress:
            self.namer = lambda name: f"{name}.gz"
            self.rotator = _gzip_rotator

    def _today(self) -> date:
        return self.clock().date()

    def path_for(self, day: date, index: int | None = None) -> Path:
        suffix = f".{index}" if index else ""
        return self.directory / f"{self.prefix}-{day.isoformat()}{suffix}.log"

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        if self._today() != self.current_day:
            return True
        if self.max_bytes <= 0:
            return False
        if self.stream is None:
            self.stream = self._open()
        self.stream.seek(0, 2)
        pos = self.stream.tell()
        if not pos:
            return False
        msg = f"{self.format(record)}{self.terminator}"
        return pos + len(msg.encode(self.encoding or "utf-8")) > self.max_bytes

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None

        today = self._today()
        active = Path(self.baseFilename)
        if active.exists() and active.stat().st_size > 0:
            if today == self.current_day:
                archive = self._next_archive_path(today)
                self.rotate(str(active), self.rotation_filename(str(archive)))
            elif self.rotator is not None:
                self.rotate(str(active), self.rotation_filename(str(active)))

        self.current_day = today
        self.baseFilename = os.path.abspath(self.path_for(today))
        self.prune(today)
        if not self.delay:
            self.stream = self._open()

    def _next_archive_path(self, day: date) -> Path:
        index = 1
        while True:
            candidate = self.path_for(day, index)
            if not candidate.exists() and not Path(self.rotation_filename(str(candidate))).exists():
                return candidate
            index += 1

    def prune(self, today: date) -> list[Path]:
        cutoff = today - timedelta(days=self.retention_days)
        removed: list[Path] = []
        for path in self.directory.iterdir():
            match = self._dated_name.match(path.name)
            if match is None:
                continue
            try:
                day = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            if day < cutoff:
                with suppress(FileNotFoundError):
                    path.unlink()
                    removed.append(path)
        return removed


def build_handlers(settings: Settings) -> list[logging.Handler]:
    level = level_from_name(settings.log_level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(ConsoleFormatter(colors=sys.stdout.isatty() or not settings.is_production))
    handlers: list[logging.Handler] = [console]

    if settings.is_production:
        json_formatter = JSONFormatter()

        app_file = DailyRotatingFileHandler(settings.log_file_path, "application")
        app_file.setLevel(level)
        app_file.setFormatter(json_formatter)

        error_file = DailyRotatingFileHandler(settings.log_file_path, "error")
        error_file.setLevel(logging.ERROR)
        error_file.setFormatter(json_formatter)

        handlers.extend([app_file, error_file])
    return handlers


def configure_logging(settings: Settings) -> AppLogger:
    """Install the sinks on the `app` logger. Safe to call more than once."""
    logger = logging.getLogger(APP_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level_from_name(settings.log_level))
    for handler in build_handlers(settings):
        logger.addHandler(handler)
    return AppLogger(logger)


class AppLogger:
    def __init__(self, logger: logging.Logger | str) -> None:
        self._logger = logging.getLogger(logger) if isinstance(logger, str) else logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _emit(
        self,
        level: int,
        message: str,
        meta: Mapping[str, Any] | None = None,
        context: str | None = None,
    ) -> None:
        fields = dict(meta or {})
        if context is not None:
            fields["context"] = context
        # stacklevel points funcName/lineno at the code calling the public method.
        self._logger.log(level, message, extra={"meta": fields}, stacklevel=3)

    def log(self, message: str, context: str | None = None) -> None:
        self._emit(logging.INFO, message, context=context)

    def error(self, message: str, trace: str | None = None, context: str | None = None, **meta: Any) -> None:
        self._emit(logging.ERROR, message, {"trace": trace, **meta}, context)

    def warn(self, message: str, context: str | None = None, **meta: Any) -> None:
        self._emit(logging.WARNING, message, meta, context)

    def debug(self, message: str, context: str | None = None, **meta: Any) -> None:
        self._emit(logging.DEBUG, message, meta, context)

    def verbose(self, message: str, context: str | None = None, **meta: Any) -> None:
        self._emit(VERBOSE, message, meta, context)

    def log_with_meta(
        self,
        level: str | int,
        message: str,
        meta: Mapping[str, Any] | None,
        context: str | None = None,
    ) -> None:
        """Unknown level names are logged at INFO with the requested name kept in `requestedLevel`."""
        try:
            resolved = level_from_name(level)
        except ValueError:
            resolved = logging.INFO
            meta = {**(meta or {}), "requestedLevel": str(level)}
        self._emit(resolved, message, meta, context)

    def log_request(self, request: Request, context: str | None = None) -> None:
        self._emit(
            logging.INFO,
            "HTTP Request",
            {
                "method": request.method,
                "url": str(request.url),
                "ip": request.client.host if request.client else None,
                "userAgent": request.headers.get("user-agent"),
            },
            context,
        )

    def log_response(
        self,
        request: Request,
        response: Response,
        response_time_ms: float,
        context: str | None = None,
    ) -> None:
        self._emit(
            logging.INFO,
            "HTTP Response",
            {
                "method": request.method,
                "url": str(request.url),
                "statusCode": response.status_code,
                "responseTime": f"{round(response_time_ms)}ms",
            },
            context,
        )

    def log_failed_response(
        self,
        request: Request,
        response_time_ms: float,
        trace: str | None = None,
        context: str | None = None,
    ) -> None:
        self._emit(
            logging.ERROR,
            "HTTP Response",
            {
                "method": request.method,
                "url": str(request.url),
                "statusCode": 500,
                "responseTime": f"{round(response_time_ms)}ms",
                "trace": trace,
            },
            context,
        )


def get_logger(name: str) -> AppLogger:
    return AppLogger(logging.getLogger(name))
