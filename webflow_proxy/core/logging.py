"""Logging configuration utilities for the Webflow proxy."""
import logging
import os
from typing import Optional

# prefix for every logger in this service
SERVICE_NAME = "Webflow-Proxy"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging from ``level`` or the LOG_LEVEL environment variable."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{component}")
