"""
Logging configuration for applications using smartrepo.

smartrepo modules only create loggers; they never install handlers.
Applications call setup_logging() once at startup to route those records.

Settings are read from environment variables with the ``SMARTREPO_`` prefix:
    SMARTREPO_LOG_LEVEL   DEBUG, INFO, WARNING, ERROR (default INFO)
    SMARTREPO_LOG_FORMAT  json or text (default json)
"""

from __future__ import annotations

import logging

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ObservabilitySettings(BaseSettings):
    """Logging configuration loaded from environment."""

    log_level: str = Field(default="INFO", description="Root log level")
    log_format: str = Field(default="json", description="Log format (json, text)")
    quiet_loggers: list[str] = Field(
        default=["asyncio"],
        description="Third-party loggers capped at WARNING",
    )

    model_config = {"env_prefix": "SMARTREPO_"}


def setup_logging(settings: ObservabilitySettings | None = None) -> None:
    """Configure root logging based on settings.

    Args:
        settings: Logging settings (loaded from env if not provided)
    """
    settings = settings or ObservabilitySettings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    for name in settings.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
