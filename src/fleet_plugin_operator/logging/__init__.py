"""Logging configuration for fleet_plugin_operator."""

from fleet_plugin_operator.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
