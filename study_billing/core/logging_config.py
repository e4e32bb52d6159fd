from __future__ import annotations

import logging
import logging.config
import sys
from typing import Any, Dict, Optional

from .settings import S


def build_logging_config(level: str = "INFO", fmt: str = "json") -> Dict[str, Any]:
    formatter = "json" if fmt == "json" else "console"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                "json_ensure_ascii": False,
            },
            "console": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "study_billing": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
        },
        "root": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    }


def configure_logging(config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """
    Configure logging for the service.

    Uses a JSON formatter by default; set LOG_FORMAT=console for plain lines.
    """
    if config is None:
        config = build_logging_config(S.log_level, S.log_format)
    logging.config.dictConfig(config)
    logger = logging.getLogger("study_billing")
    logger.debug("Logging configured")
    return logger
