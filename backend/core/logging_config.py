# backend/core/logging_config.py

import logging
import sys
from typing import Optional

from .config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and scheduled jobs."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from SQLAlchemy unless SQL logging was requested
    if not settings.log_sql_queries:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
