"""
Logging configuration with optional suppression of availability probe chatter
"""

import logging
import logging.config
import os
from typing import Any, Dict, Optional

PROBE_LOGGERS = ("lexiroute.availability", "lexiroute.offline")


class ProbeChatterFilter(logging.Filter):
    """Filter to suppress routine availability probe logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Drop probe records below WARNING, keep everything else."""
        if record.name.startswith(PROBE_LOGGERS) and record.levelno < logging.WARNING:
            return False
        return True


def get_logging_config(level: Optional[str] = None, quiet_probes: Optional[bool] = None) -> Dict[str, Any]:
    """Get logging configuration for dictConfig."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if quiet_probes is None:
        quiet_probes = os.getenv("LEXIROUTE_QUIET_PROBES", "false").lower() == "true"

    handler: Dict[str, Any] = {
        "class": "logging.StreamHandler",
        "formatter": "default",
        "stream": "ext://sys.stdout",
    }
    if quiet_probes:
        handler["filters"] = ["probe_chatter_filter"]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "probe_chatter_filter": {
                "()": ProbeChatterFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": handler
        },
        "loggers": {
            "lexiroute": {
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


def setup_logging(level: Optional[str] = None, quiet_probes: Optional[bool] = None) -> None:
    logging.config.dictConfig(get_logging_config(level, quiet_probes))
