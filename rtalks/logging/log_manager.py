"""
Log manager for RTalks.

Holds the process-wide logging configuration applied through
``logging.config.dictConfig`` and hands out named loggers.
"""

import logging
import logging.config
import os


class LogManager:
    """
    Singleton that applies the logging configuration exactly once.

    Attributes:
        _instance (LogManager | None): Singleton instance of LogManager
        logger_settings (dict): Logging configuration settings
    """

    _instance: 'LogManager | None' = None

    def __init__(self, logger_settings: dict):
        self.logger_settings = dict(logger_settings or {})
        if not self.logger_settings.get('handlers'):
            return

        self.logger_settings.setdefault('version', 1)

        # File handlers need their directory before dictConfig opens them
        for handler in self.logger_settings['handlers'].values():
            log_path = handler.get('filename')
            if log_path and os.path.dirname(log_path):
                os.makedirs(os.path.dirname(log_path), exist_ok=True)

        try:
            logging.config.dictConfig(self.logger_settings)
        except ValueError as e:
            logging.basicConfig(level=logging.INFO)
            logging.warning(
                f"Failed to configure logging with provided settings: {e}")

    @classmethod
    def get_instance(cls, logger_settings: dict = None) -> 'LogManager':
        """Get the singleton instance, configuring logging on first use."""
        if cls._instance is None:
            cls._instance = cls(logger_settings)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)
