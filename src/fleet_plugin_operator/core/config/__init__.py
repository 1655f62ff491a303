"""Configuration management with Pydantic validation."""

from fleet_plugin_operator.core.config.models import (
    HelmConfig,
    OperatorConfig,
    RateLimitConfig,
)

__all__ = [
    "HelmConfig",
    "OperatorConfig",
    "RateLimitConfig",
]
