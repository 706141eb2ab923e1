"""Logging setup shared by the API and the CLI."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("payrun_engine").setLevel(level)
    # SQL echo is controlled by the engine, not by the log level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
