"""Logging setup for the API process."""

import logging.config

from eventhub.config import settings


def build_logging_config(level: str, as_json: bool) -> dict:
    formatter = "json" if as_json else "standard"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
            },
        },
        "loggers": {
            "eventhub": {
                "handlers": ["console"],
                "level": level.upper(),
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    }


def configure_logging() -> None:
    logging.config.dictConfig(build_logging_config(settings.log_level, settings.log_json))
