"""
Logging setup.
"""
import logging

from tabtrust.core.config import settings


def configure_logging() -> None:
    """Configure the root logger from LOG_LEVEL."""
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
