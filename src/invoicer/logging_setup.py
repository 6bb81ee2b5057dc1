"""Logging for the ``invoicer`` logger namespace.

The ``[logging]`` table picks the handlers: ``output`` is "console", "file"
or "both", and file output rotates unless ``rotate = false``. Setup runs once
per process; reset_logging() undoes it for tests.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, LoggingConfig

LOGGER_NAME = "invoicer"
CONSOLE_FORMAT = "%(levelname)-7s [%(name)-20s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)-20s] %(message)s"

# WeasyPrint and its font stack log every CSS quirk
QUIET_LOGGERS = ("weasyprint", "fontTools")

_configured = False


def log_file_path(config: Config) -> Path | None:
    """Target of file output, or None when the config logs to the console only.

    ``${...}`` placeholders expand as for directories; a relative result is
    taken relative to the config file's directory.
    """
    log_config = config.logging
    if log_config.output not in ("file", "both") or not log_config.file:
        return None
    path = config.resolve_dir(log_config.file)
    return path if path.is_absolute() else config.config_dir / path


def _file_handler(path: Path, log_config: LoggingConfig) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    if log_config.rotate:
        handler = RotatingFileHandler(
            path,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
        )
    else:
        handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def build_handlers(config: Config) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if config.logging.output in ("console", "both"):
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(console)
    path = log_file_path(config)
    if path is not None:
        handlers.append(_file_handler(path, config.logging))
    return handlers


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(config: Config, verbose: bool = False) -> logging.Logger:
    """Configure the invoicer logger from config; ``verbose`` forces DEBUG."""
    global _configured
    logger = logging.getLogger(LOGGER_NAME)
    if _configured:
        return logger
    _configured = True

    if verbose:
        level = logging.DEBUG
    else:
        level = logging.getLevelName(config.logging.level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)
    _drop_handlers(logger)
    for handler in build_handlers(config):
        logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)
    return logger


def reset_logging() -> None:
    global _configured
    _configured = False
    _drop_handlers(logging.getLogger(LOGGER_NAME))
