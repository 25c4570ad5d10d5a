"""
Shared helpers used across features.
"""
import logging
from logging.config import dictConfig

from app.core import config


_configured = False


def configure_logging() -> None:
    """
    Configure application-wide logging once.
    Safe to call repeatedly; later calls are no-ops.
    """
    global _configured
    if _configured:
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                }
            },
            "loggers": {
                "app": {"handlers": ["console"], "level": config.LOG_LEVEL, "propagate": False},
                "scripts": {"handlers": ["console"], "level": config.LOG_LEVEL, "propagate": False},
                "__main__": {"handlers": ["console"], "level": config.LOG_LEVEL, "propagate": False},
            },
        }
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring logging on first use."""
    configure_logging()
    return logging.getLogger(name)
