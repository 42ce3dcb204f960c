"""
Structured Logging Setup
Provides consistent logging across the simulator and the client.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO
import structlog
from logging.handlers import RotatingFileHandler

from mbus_sim.config import LoggingConfig


def _rotating_handler(path: str, config: LoggingConfig, level: int) -> RotatingFileHandler:
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        path,
        maxBytes=config.max_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    return handler


def setup_logging(config: LoggingConfig, stream: Optional[TextIO] = None) -> structlog.BoundLogger:
    """
    Setup structured logging based on configuration.

    Args:
        config: Logging configuration
        stream: Console stream (stdout unless given)

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, config.level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # Console handler (always enabled)
    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(log_level)

    if config.format == "json":
        formatter = logging.Formatter('%(message)s')
    else:
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)8s] %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.file:
        file_handler = _rotating_handler(config.file, config, log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if config.error_file:
        error_handler = _rotating_handler(config.error_file, config, logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger()
    logger.info("logging_initialized", level=config.level, format=config.format)

    return logger


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
