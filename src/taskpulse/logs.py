"""
Package logging for taskpulse.

Everything below the ``taskpulse`` logger goes to a detailed log file and,
filtered by level, to stderr. The console level comes from the environment:

  TASKPULSE_DEBUG=1          debug output with logger names
  TASKPULSE_LOG_LEVEL=INFO   any standard level name
  TASKPULSE_LOG_DIR=path     where taskpulse.log is written
"""
import logging
import os
import sys
from pathlib import Path
from typing import Optional

ROOT_LOGGER = 'taskpulse'
LOG_DIR = Path.home() / ".local" / "share" / "taskpulse" / "logs"

FILE_FORMAT = '[%(asctime)s] %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s'
FILE_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
DEBUG_CONSOLE_FORMAT = '%(levelname)-8s [%(name)s] %(message)s'
CONSOLE_FORMAT = '%(levelname)s: %(message)s'


def _debug_enabled() -> bool:
    return os.getenv('TASKPULSE_DEBUG', '').lower() in ('1', 'true', 'yes')

def _console_level(debug: bool) -> int:
    if debug:
        return logging.DEBUG
    name = os.getenv('TASKPULSE_LOG_LEVEL', '').upper()
    return getattr(logging, name, logging.WARNING) if name else logging.WARNING

def _file_handler(log_dir: Path) -> Optional[logging.Handler]:
    """None when the directory cannot be created or opened."""
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / "taskpulse.log")
    except OSError:
        return None
    handler.setFormatter(logging.Formatter(FILE_FORMAT, FILE_DATE_FORMAT))
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging() -> logging.Logger:
    """(Re)build the handlers of the ``taskpulse`` logger from the environment."""
    debug = _debug_enabled()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    handler = _file_handler(Path(os.getenv('TASKPULSE_LOG_DIR', str(LOG_DIR))))
    if handler is not None:
        logger.addHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(DEBUG_CONSOLE_FORMAT if debug else CONSOLE_FORMAT))
    console.setLevel(_console_level(debug))
    logger.addHandler(console)
    return logger

setup_logging()


def get_logger(name: str = None) -> logging.Logger:
    return logging.getLogger(f'{ROOT_LOGGER}.{name}' if name else ROOT_LOGGER)
