"""Typed results of Helm CLI operations."""

from fleet_plugin_operator.integrations.kubernetes.models.helm import (
    HelmCommandResult,
    HelmRelease,
    HelmReleaseHistory,
    HelmTemplateResult,
    HelmTestResult,
)

__all__ = [
    "HelmCommandResult",
    "HelmRelease",
    "HelmReleaseHistory",
    "HelmTemplateResult",
    "HelmTestResult",
]
