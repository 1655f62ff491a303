"""Kubernetes integration - API client, Helm CLI wrapper and configuration."""

from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient
from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig
from fleet_plugin_operator.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)
from fleet_plugin_operator.integrations.kubernetes.helm_client import (
    HelmBinaryNotFoundError,
    HelmClient,
    HelmCommandError,
    HelmError,
)

__all__ = [
    "HelmBinaryNotFoundError",
    "HelmClient",
    "HelmCommandError",
    "HelmError",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConfig",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesValidationError",
]
