import logging
import logging.config
from typing import Optional

from config import settings


def build_logging_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(levelname)s | %(name)s | %(asctime)s | line %(lineno)d | %(message)s",
                "datefmt": "%H:%M:%S",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard",
            },
        },
        "loggers": {
            "verification": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            # Quieten client libraries
            "urllib3": {"level": "WARNING", "handlers": [], "propagate": True},
            "httpx": {"level": "WARNING", "handlers": [], "propagate": True},
            "openai": {"level": "WARNING", "handlers": [], "propagate": True},
            "PIL": {"level": "WARNING", "handlers": [], "propagate": True},
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the package loggers from settings.LOG_LEVEL"""
    level = (level or settings.LOG_LEVEL).upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"
    logging.config.dictConfig(build_logging_config(level))
