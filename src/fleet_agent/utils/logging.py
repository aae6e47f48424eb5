"""Rotating logger setup and state-specific log targets."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def setup_logger(
    name: str = "fleet_agent",
    log_file: str = "./logs/agent.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: int = logging.INFO,
) -> logging.Logger:
    """Setup rotating file logger with ISO 8601 timestamps.

    Args:
        name: Logger name
        log_file: Path to log file (created if doesn't exist)
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Logging level

    Returns:
        Configured logger instance
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers if already configured
    if logger.handlers:
        return logger

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


def switch_log_target(
    logger: logging.Logger,
    log_file: Optional[Path],
    previous: Optional[logging.Handler] = None,
    level: int = logging.NOTSET,
) -> Optional[logging.Handler]:
    """Point the state-specific log handler of `logger` at `log_file`.

    The previous state handler is always detached and closed. With no
    `log_file` nothing replaces it and records only reach the agent log.

    Args:
        logger: Logger receiving the state handler
        log_file: File for the new state handler, None for no state log
        previous: Handler installed by the last switch, if any
        level: Level of the new handler

    Returns:
        The handler now active for the current state, if any
    """
    if previous is not None:
        logger.removeHandler(previous)
        previous.close()

    if log_file is None:
        return None

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    return handler
