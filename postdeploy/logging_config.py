"""
Logging configuration with query string redaction
"""

import logging
import logging.config
import re
from typing import Any, Dict

# Query strings on control-plane and logic app URLs carry tokens and SAS secrets
_URL_QUERY = re.compile(r"(https?://[^\s?]+)\?[^\s,]*")


class QueryStringRedactionFilter(logging.Filter):
    """Filter that strips query strings from URLs in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Rewrite the record message in place; never drops a record."""
        message = record.getMessage()
        redacted = _URL_QUERY.sub(r"\1", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration for the postdeploy loggers."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "redact_query_strings": {
                "()": QueryStringRedactionFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
                "filters": ["redact_query_strings"]
            }
        },
        "loggers": {
            "postdeploy": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            "httpx": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False
            }
        },
        "root": {
            "level": level,
            "handlers": ["default"]
        }
    }


def configure_logging(level: str = "INFO") -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(level))
