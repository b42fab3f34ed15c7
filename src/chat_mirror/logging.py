"""Logging configuration for chat-mirror.

Each runnable component (``sync``, ``search``, ``admin``) logs to its own
file under ~/chat-mirror/logs/. Handlers live on the ``chat_mirror``
package logger, so module loggers obtained with ``get_logger`` reach the
file of whichever component is running.
"""

import logging
import sys
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / "chat-mirror" / "logs"
PACKAGE_LOGGER = "chat_mirror"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_for(name: str, log_dir: Path | None = None) -> Path:
    """Path of a component's log file."""
    return (log_dir or DEFAULT_LOG_DIR) / f"{name}.log"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a chat-mirror component.

    Calling again for the same component is a no-op. Calling for a
    different component replaces the previous component's handlers.

    Args:
        name: Component name (used for the log filename)
        log_dir: Directory for log files (defaults to ~/chat-mirror/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to stderr (defaults to True)

    Returns:
        Configured package logger
    """
    log_file = log_file_for(name, log_dir)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    handler_name = f"{PACKAGE_LOGGER}:{name}"
    if any(h.get_name() == handler_name for h in logger.handlers):
        return logger

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.set_name(handler_name)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.set_name(f"{handler_name}:console")
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a module logger under the package logger.

    Args:
        name: Logger name (will be prefixed with 'chat_mirror.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
