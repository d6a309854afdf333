"""
Payroll Core - Logging Configuration

Single entry point for configuring the stdlib logging used across services.
"""

import logging
from typing import Optional

from app.config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from settings. Debug mode forces DEBUG level."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    # SQL echo is controlled separately through database_echo
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
