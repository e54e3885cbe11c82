"""
Logging setup for RTalks.

Logging is initialized after configuration is loaded, so the config
module never depends on it.

Usage:
    from rtalks.logging.setup import setup_logging, get_logger

    settings = get_config_manager().load()
    setup_logging(settings.logging.model_dump())

    logger = get_logger(__name__)
"""

import logging
from typing import Dict, Any, Optional
from rtalks.logging.log_manager import LogManager


_logging_configured = False
_log_manager: Optional[LogManager] = None


def setup_logging(logging_config: Dict[str, Any]) -> None:
    """
    Initialize logging system with configuration.

    Args:
        logging_config: Dictionary in ``logging.config.dictConfig`` format
    """
    global _logging_configured, _log_manager

    if _logging_configured:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping re-initialization")
        return

    _log_manager = LogManager.get_instance(logging_config)
    _logging_configured = True

    logging.getLogger(__name__).info("Logging system initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Before ``setup_logging`` runs, this returns a plain logger with a
    console handler so early modules can still log.
    """
    if _logging_configured and _log_manager is not None:
        return _log_manager.get_logger(name)

    logger = logging.getLogger(name)
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def is_logging_configured() -> bool:
    """Check if setup_logging() has been called."""
    return _logging_configured


def reset_logging():
    """Reset logging configuration (for tests)."""
    global _logging_configured, _log_manager
    _logging_configured = False
    _log_manager = None
    LogManager.reset_instance()
