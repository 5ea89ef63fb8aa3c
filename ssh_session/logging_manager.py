"""Logger setup for the ssh_session package."""
import logging
import os
from pathlib import Path
from typing import Optional

from .constants import LOG_VERBOSITY_LEVELS, LogVerbosity

LOGGER_NAME = 'ssh_session'
DEFAULT_LOG_DIR = '/tmp/ssh_session_logs'
LOG_FORMAT = '%(asctime)s - [%(threadName)s] - %(name)s - %(levelname)s - %(message)s'


def get_logger(child: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    return logger.getChild(child) if child else logger


def configure_file_logging(log_dir: Optional[str] = None, level: int = logging.DEBUG) -> logging.Logger:
    """Send package logs to a file instead of the console.

    Used by the MCP server, where stdout carries the protocol and anything
    written there would corrupt it. Calling this more than once is harmless:
    a second FileHandler is never attached.
    """
    log_dir = log_dir or os.environ.get('SSH_SESSION_LOG_DIR', DEFAULT_LOG_DIR)
    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True, parents=True)
    log_file = log_path / 'ssh_session.log'

    logger = get_logger()
    logger.setLevel(level)
    logger.propagate = False

    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(str(log_file)):
            return logger

    file_handler = logging.FileHandler(str(log_file))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    logger.info(f"File logging enabled: {log_file}")
    return logger


def apply_log_verbosity(verbosity: LogVerbosity) -> None:
    """Map a transport verbosity level onto the paramiko logger."""
    level = LOG_VERBOSITY_LEVELS[LogVerbosity(verbosity)]
    logging.getLogger('paramiko').setLevel(level)
    get_logger('options').debug(f"paramiko log level set to {logging.getLevelName(level)} ({verbosity!r})")
