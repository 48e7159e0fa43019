"""Log routing for the CLI: a rotating diagnostic file plus terse stderr output.

Stdout belongs to command results (``--dry-run`` prints the rewritten file
there), so every handler installed here writes to the log file or stderr.
The file always records at least ``INFO``; the stderr threshold follows the
command line: warnings by default, ``-v`` for info, ``-vv`` or ``--debug``
for everything.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path

__all__ = ["LOG_DIR_ENV", "LOG_FILE_NAME", "console_level", "get_log_path", "reset_logging", "setup_logging"]

LOG_DIR_ENV = "NINETYNINE_LOG_DIR"
LOG_FILE_NAME = "ninetynine.log"
_DEFAULT_LOG_DIR = Path("~/.ninetynine/logs")
_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONSOLE_FORMAT = "ninetynine: %(levelname)s: %(message)s"
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio",)


@dataclass(slots=True)
class _Routing:
    path: Path
    file_level: int
    stderr_level: int | None
    handlers: list[logging.Handler]


_ROUTING: _Routing | None = None


def console_level(verbosity: int = 0, *, debug: bool = False) -> int:
    """Map a ``-v`` count (and the debug switch) onto a stderr threshold."""

    if debug or verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(
    *,
    debug: bool = False,
    verbosity: int = 0,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the file and stderr handlers on the root logger.

    Repeated calls keep the first routing unless ``force`` is set, which lets
    the CLI upgrade to debug output once persisted settings are known.
    """

    global _ROUTING
    if _ROUTING is not None and not force:
        return _ROUTING.path

    path = _resolve_log_dir(log_dir) / LOG_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    file_level = logging.DEBUG if debug else logging.INFO
    stderr_level = console_level(verbosity, debug=debug) if console else None

    handlers: list[logging.Handler] = [_file_handler(path, file_level, max_bytes, backup_count)]
    if stderr_level is not None:
        handlers.append(_stderr_handler(stderr_level))

    logging.basicConfig(level=min(handler.level for handler in handlers), handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, file_level))

    _ROUTING = _Routing(path=path, file_level=file_level, stderr_level=stderr_level, handlers=handlers)
    return path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _ROUTING.path if _ROUTING is not None else None


def reset_logging() -> None:
    """Detach and close the handlers installed by :func:`setup_logging`."""

    global _ROUTING
    _close_handlers()
    _ROUTING = None


def _close_handlers() -> None:
    if _ROUTING is None:
        return
    root = logging.getLogger()
    for handler in _ROUTING.handlers:
        root.removeHandler(handler)
        handler.close()


def _file_handler(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _stderr_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    return handler


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
