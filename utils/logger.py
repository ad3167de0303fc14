from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict

LOG_FILE_NAME = "vacation_responder.log"
# third-party loggers that flood DEBUG output on every poll
QUIET_LOGGERS = ("googleapiclient", "google_auth_oauthlib", "urllib3", "schedule")


def logging_config(log_path: Path, level: str = "INFO") -> Dict[str, Any]:
    """Return a dictConfig mapping: full records to a rotating file, short lines to stderr."""

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "file": {"format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s"},
            "poll": {"format": "%(asctime)s %(levelname)-7s %(message)s", "datefmt": "%H:%M:%S"},
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "file",
                "filename": str(log_path),
                "maxBytes": 1_000_000,
                "backupCount": 3,
                "encoding": "utf-8",
            },
            "console": {"class": "logging.StreamHandler", "formatter": "poll"},
        },
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {"handlers": ["file", "console"], "level": level.upper()},
    }


def configure_logging(log_dir: Path, level: str = "INFO") -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME
    logging.config.dictConfig(logging_config(log_path, level))
    logging.getLogger(__name__).debug("Logging to %s at %s", log_path, level)
    return log_path
