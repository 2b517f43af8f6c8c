"""
Logging configuration for the API, Celery workers and scripts.

Everything logs to stdout in one format; per-instrument failures are
WARNING, run summaries INFO.
"""

import logging
import sys
from typing import Optional

from kabuchart.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "uvicorn": logging.INFO,
    "sqlalchemy": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "celery": logging.INFO,
    "redis": logging.WARNING,
    "yfinance": logging.WARNING,
    "peewee": logging.WARNING,
}


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper()),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for name, cap in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)
