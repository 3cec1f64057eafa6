"""
Logging setup for ThingDB.

ThingDB modules log through ``logging.getLogger(__name__)`` with
structured ``extra`` fields. This module wires the root logger once,
at process start, from ObservabilityConfig.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import Config


def setup_logging(config: Config) -> None:
    """Configure logging based on configuration.

    Args:
        config: ThingDB configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
