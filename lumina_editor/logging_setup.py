"""Logging setup for the editor and its command line front end."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from lumina_editor.config import Config

DEFAULT_LOGGER_NAME = "lumina_editor"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
# Held at WARNING unless the editor itself runs at DEBUG.
TRANSPORT_LOGGERS = ("urllib3", "requests")


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _open_log_file(path: Path, max_bytes: int, backup_count: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    if max_bytes > 0:
        return RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    return logging.FileHandler(path, encoding="utf-8")


def _file_handler(
    log_file: Union[str, Path],
    *,
    max_bytes: int = 0,
    backup_count: int = 3,
) -> tuple[Optional[logging.Handler], Optional[str]]:
    """Open ``log_file``, retrying in the working directory.

    Returns the handler (or ``None``) plus a warning to emit once logging
    is up, since the failure cannot be logged before that.
    """
    log_path = Path(log_file).expanduser()
    if not log_path.is_absolute():
        log_path = Path.cwd() / log_path

    try:
        return _open_log_file(log_path, max_bytes, backup_count), None
    except OSError as exc:
        fallback_path = Path.cwd() / log_path.name
        try:
            handler = _open_log_file(fallback_path, max_bytes, backup_count)
        except OSError as fallback_exc:
            return None, (
                f"Log file '{log_path}' unavailable ({exc}) and fallback "
                f"'{fallback_path}' failed as well: {fallback_exc}"
            )
        return handler, f"Log file '{log_path}' unavailable ({exc}); writing to '{fallback_path}'"


def configure_logging(
    logger_name: Optional[str] = None,
    *,
    level: Union[int, str] = logging.INFO,
    log_file: Union[str, Path, None] = None,
    include_stream: bool = True,
    max_bytes: int = 0,
    backup_count: int = 3,
) -> logging.Logger:
    """Install root handlers and return the editor logger.

    Parameters
    ----------
    logger_name:
        Name of the logger to return. Defaults to ``"lumina_editor"``.
    level:
        Level as a number or a name such as ``"debug"``; unknown names mean INFO.
    log_file:
        Optional log file path. ``None`` disables file logging.
    include_stream:
        Attach a console handler.
    max_bytes, backup_count:
        Rotate the log file once it reaches ``max_bytes``; 0 never rotates.
    """
    numeric_level = _resolve_level(level)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = []
    pending_warning: Optional[str] = None
    if log_file:
        file_handler, pending_warning = _file_handler(
            log_file,
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
        if file_handler is not None:
            handlers.append(file_handler)
    if include_stream:
        handlers.append(logging.StreamHandler())
    if not handlers:
        handlers.append(logging.NullHandler())
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    transport_level = numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

    logger = logging.getLogger(logger_name or DEFAULT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    if pending_warning:
        logger.warning(pending_warning)
    return logger


def configure_from_config(
    config: Config,
    logger_name: Optional[str] = None,
    *,
    verbose: bool = False,
) -> logging.Logger:
    """Apply the logging fields of ``config``; ``verbose`` forces DEBUG."""
    return configure_logging(
        logger_name,
        level="DEBUG" if verbose else config.log_level,
        log_file=config.log_file,
        include_stream=config.log_to_console,
        max_bytes=config.log_max_bytes,
        backup_count=config.log_backup_count,
    )


__all__ = ["DEFAULT_LOGGER_NAME", "configure_from_config", "configure_logging"]
