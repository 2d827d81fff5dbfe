"""Logging setup for Remo Bot.

Each component writes to its own rotating file under LOG_DIR (bot.log,
connection.log, api.log, ...) and everything is echoed to the console.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from config import settings

LOG_FORMAT = '[%(asctime)s] %(levelname)s %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Library loggers that are too chatty at INFO
NOISY_LOGGERS = (
    'uvicorn',
    'uvicorn.access',
    'fastapi',
    'sqlalchemy',
    'websockets',
    'mcp',
)


def _level() -> int:
    return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)


def _file_handler(log_file: str) -> Optional[logging.Handler]:
    try:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        return RotatingFileHandler(
            os.path.join(settings.LOG_DIR, log_file),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUPS,
            encoding='utf-8'
        )
    except OSError as e:
        logging.getLogger(__name__).warning(f"File logging disabled for {log_file}: {e}")
        return None


def setup_logger(name: str, log_file: Optional[str] = 'bot.log') -> logging.Logger:
    """Get a component logger with console and rotating file output.

    Args:
        name: Logger name (usually __name__)
        log_file: File under LOG_DIR, or None for console only

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = _level()
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler()]
    if log_file and settings.LOG_TO_FILE:
        file_handler = _file_handler(log_file)
        if file_handler is not None:
            handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def quiet_library_loggers(level: int = logging.WARNING) -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


quiet_library_loggers()
