"""Logging configuration for the backup service.

This module configures the root logger with:
- A custom TRACE level (used for raw restic command output).
- Console output.
- Rotating file output under `LOG_DIR`, including separate error-only and
  daily log files for easier triage.

Log lines carry their context as `key=value` pairs in the message, e.g.
`Backup failed (backup=db, operation=backup): ...`.

The configuration is safe to call multiple times.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


TRACE_LEVEL_NUM = 5

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are noisy at INFO/DEBUG.
_QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "apscheduler.executors.default")


def _install_trace_level() -> None:
    """Install the TRACE logging level and `Logger.trace` helper."""

    if logging.getLevelName(TRACE_LEVEL_NUM) != "TRACE":
        logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")

    if not hasattr(logging.Logger, "trace"):

        def trace(self: logging.Logger, message: str, *args, **kwargs) -> None:
            if self.isEnabledFor(TRACE_LEVEL_NUM):
                self._log(TRACE_LEVEL_NUM, message, args, **kwargs)

        logging.Logger.trace = trace  # type: ignore[attr-defined]


def resolve_level(log_level: str, *, debug: bool = False) -> int:
    """Resolve a level name to its numeric value.

    Args:
        log_level: Level name (TRACE, DEBUG, INFO, WARNING, ERROR).
        debug: When True and no level is given, DEBUG is used.

    Returns:
        int: Numeric log level.

    Raises:
        ValueError: When the level name is invalid.
    """

    name = str(log_level or "").strip().upper()
    if not name:
        name = "DEBUG" if debug else "INFO"
    if name == "WARN":
        name = "WARNING"
    if name == "TRACE":
        return TRACE_LEVEL_NUM

    level = getattr(logging, name, None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {log_level}")
    return level


def _file_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler._auto_restic_handler = True  # type: ignore[attr-defined]
    return handler


def configure_logging(
    *,
    log_dir: Optional[str] = "/var/log/auto-restic",
    log_level: str = "INFO",
    debug: bool = False,
    log_filename: str = "auto-restic.log",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure application-wide logging.

    Args:
        log_dir: Directory for log files; console-only logging when empty.
        log_level: Root log level name (e.g. INFO, DEBUG, TRACE).
        debug: When True, defaults to DEBUG unless log_level explicitly overrides it.
        log_filename: Log file name (within log_dir).
        max_bytes: Rotate the log file after this size.
        backup_count: Number of rotated files to keep.

    Raises:
        ValueError: When the provided log_level is invalid.
    """

    _install_trace_level()

    root = logging.getLogger()
    if getattr(root, "_auto_restic_logging_configured", False):
        return

    resolved_level = resolve_level(log_level, debug=debug)
    root.setLevel(resolved_level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler()
    root.addHandler(_file_handler(console_handler, resolved_level, formatter))

    if log_dir:
        log_filename_path = Path(log_filename)
        suffix = log_filename_path.suffix or ".log"
        log_path = Path(log_dir) / str(log_filename)
        error_log_path = Path(log_dir) / f"{log_filename_path.stem}.error{suffix}"
        daily_log_path = Path(log_dir) / f"{log_filename_path.stem}.day{suffix}"
        daily_error_log_path = Path(log_dir) / f"{log_filename_path.stem}.day.error{suffix}"
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            for path, level in ((log_path, resolved_level), (error_log_path, logging.ERROR)):
                handler = RotatingFileHandler(
                    filename=str(path),
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
                root.addHandler(_file_handler(handler, level, formatter))

            for path, level in ((daily_log_path, resolved_level), (daily_error_log_path, logging.ERROR)):
                handler = TimedRotatingFileHandler(
                    filename=str(path),
                    when="midnight",
                    backupCount=backup_count,
                    utc=True,
                    encoding="utf-8",
                )
                handler.suffix = "%Y-%m-%d"
                root.addHandler(_file_handler(handler, level, formatter))
        except OSError:
            logging.getLogger(__name__).warning(
                "Failed to configure file logging under %s; continuing with console-only logging",
                log_dir,
            )

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True

    if resolved_level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    root._auto_restic_logging_configured = True  # type: ignore[attr-defined]


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger instance.

    Args:
        name: Logger name.

    Returns:
        logging.Logger: Logger instance.
    """

    _install_trace_level()
    return logging.getLogger(name or __name__)
