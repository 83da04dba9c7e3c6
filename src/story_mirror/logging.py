"""Logging setup for storymirror, built on loguru.

Import code logs through ``get_logger(__name__)``. While a repo is being
imported, the server, repo and event are bound as extras so that console
lines carry a ``[repo]`` scope and file records keep the full context.
SQLAlchemy and httpx log through the standard library; their records are
forwarded to loguru at a level that follows ours.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# stdlib logger -> (level while debugging, level otherwise)
_LIBRARY_LEVELS: dict[str, tuple[int, int]] = {
    "sqlalchemy.engine": (logging.INFO, logging.WARNING),
    "httpx": (logging.DEBUG, logging.WARNING),
    "httpcore": (logging.DEBUG, logging.WARNING),
}

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {extra} | {message}"

_configured = False


def _console_format(record: Record) -> str:
    extra = record["extra"]
    source = "{extra[name]}" if "name" in extra else "{name}"
    scope = " <magenta>[{extra[repo]}]</magenta>" if extra.get("repo") else ""
    return (
        "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | "
        f"<cyan>{source}</cyan>{scope} - <level>{{message}}</level>\n{{exception}}"
    )


class InterceptHandler(logging.Handler):
    """Forward standard library records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip the frames of the logging module itself
        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _effective_level(level: LogLevel, verbose: bool, quiet: bool) -> LogLevel:
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return level


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> Logger:
    """Install the console sink, the optional file sink and stdlib forwarding.

    Args:
        level: Level from ``Settings.log_level``
        verbose: ``--verbose``; logs at DEBUG, including SQL and HTTP requests
        quiet: ``--quiet``; logs at WARNING (``verbose`` wins when both are set)
        log_file: File receiving every DEBUG record, rotated and compressed
        rotation: Rotation condition of the file sink (e.g. "10 MB", "1 day")
        retention: How long rotated files are kept
        serialize: Write the file sink as JSON lines

    Returns:
        The configured loguru logger
    """
    global _configured

    effective = _effective_level(level, verbose, quiet)
    handlers: list[dict[str, Any]] = [
        {
            "sink": sys.stderr,
            "level": effective,
            "format": _console_format,
            "colorize": True,
            "backtrace": True,
            "diagnose": False,
        }
    ]
    if log_file:
        handlers.append(
            {
                "sink": log_file,
                "level": "DEBUG",
                "format": _FILE_FORMAT,
                "rotation": rotation,
                "retention": retention,
                "compression": "gz",
                "serialize": serialize,
                "filter": lambda record: "name" in record["extra"],
            }
        )
    logger.configure(handlers=handlers)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    debugging = effective in ("TRACE", "DEBUG")
    for name, (debug_level, normal_level) in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(debug_level if debugging else normal_level)

    _configured = True
    return logger


def get_logger(name: str) -> Logger:
    """Return the logger of a module.

    Usage:
        logger = get_logger(__name__)
        logger.info("Imported {} events", count)
    """
    return logger.bind(name=name)


def bind_repo(server_name: str, repo_name: str) -> Logger:
    """Logger for messages about one repo of one server."""
    return logger.bind(name="sync", server=server_name, repo=repo_name)


def bind_event(server_name: str, repo_name: str, kind: str, event_id: object) -> Logger:
    """Logger for messages about one activity-log event or webhook.

    Args:
        server_name: Name of the GitLab server
        repo_name: Repo the event belongs to
        kind: Normalized event kind (e.g. "issue/opened")
        event_id: GitLab event id, or the id of the hook's object
    """
    return bind_repo(server_name, repo_name).bind(kind=kind, event=event_id)


class LogContext:
    """Bind extras to every record logged inside the block, from any module.

    Usage:
        with LogContext(server="gitlab", repo="widgets", task=12):
            await importer.process_event(...)
    """

    def __init__(self, **context: Any) -> None:
        self._context = context
        self._manager: Any = None

    def __enter__(self) -> Logger:
        self._manager = logger.contextualize(**self._context)
        self._manager.__enter__()
        return logger

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        if self._manager is not None:
            self._manager.__exit__(exc_type, exc_val, exc_tb)
            self._manager = None


def is_configured() -> bool:
    """Whether ``setup_logging`` has run since the last reset."""
    return _configured


def reset_logging() -> None:
    """Remove every sink (used by tests)."""
    global _configured
    logger.remove()
    _configured = False
