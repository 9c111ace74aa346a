"""
Logging Setup Module

Console logging for applications using the probe. The package never calls
setup_logging() itself; it only logs through module loggers under
`latency_probe`, so applications call it once at start-up.
"""

import logging
import logging.config

from latency_probe.config import get_settings

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _logger_config(level: str) -> dict:
    return {"handlers": ["console"], "level": level, "propagate": False}


def setup_logging() -> None:
    """
    Configure console logging

    The probe logs timings at INFO and trace events at DEBUG. The httpx and
    httpcore transport loggers stay at WARNING unless DEBUG is set, as
    httpcore reports every trace event at DEBUG.
    """
    settings = get_settings()
    probe_level = "DEBUG" if settings.DEBUG else "INFO"
    transport_level = "DEBUG" if settings.DEBUG else "WARNING"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": LOG_FORMAT, "datefmt": LOG_DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "stream": "ext://sys.stderr",
                },
            },
            "root": {"handlers": ["console"], "level": "WARNING"},
            "loggers": {
                "latency_probe": _logger_config(probe_level),
                "httpx": _logger_config("WARNING"),
                "httpcore": _logger_config(transport_level),
            },
        }
    )
