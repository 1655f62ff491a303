"""Operator configuration models."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig

_TRUTHY = {"1", "true", "yes", "on"}


class HelmConfig(BaseModel):
    """Settings for the Helm chart engine."""

    model_config = ConfigDict(extra="forbid")

    binary: str | None = None
    timeout: int = 300
    max_history: int = 5

    @field_validator("timeout", "max_history")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate value is positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v


class RateLimitConfig(BaseModel):
    """Settings for the per-item retry rate limiter."""

    model_config = ConfigDict(extra="forbid")

    base_delay: float = 30.0
    max_delay: float = 3600.0
    rate: float = 10.0
    burst: int = 100

    @field_validator("base_delay", "max_delay", "rate")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate value is positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("burst")
    @classmethod
    def validate_burst(cls, v: int) -> int:
        """Validate burst is at least one token."""
        if v < 1:
            raise ValueError("burst must be at least 1")
        return v


class OperatorConfig(BaseModel):
    """Complete operator configuration."""

    model_config = ConfigDict(extra="forbid")

    kubernetes: KubernetesConfig = KubernetesConfig()
    helm: HelmConfig = HelmConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    dns_domain: str = ""
    expression_evaluation_enabled: bool = False
    max_workers: int = 3
    status_interval: int = 120
    watch_namespace: str | None = None

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        """Validate the worker pool has at least one worker."""
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v

    @field_validator("status_interval")
    @classmethod
    def validate_status_interval(cls, v: int) -> int:
        """Validate status polling interval is positive."""
        if v <= 0:
            raise ValueError("status_interval must be positive")
        return v

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> OperatorConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            FLEET_K8S_KUBECONFIG: Kubeconfig path for the control-plane cluster
            FLEET_K8S_CONTEXT: Kubeconfig context for the control-plane cluster
            FLEET_K8S_NAMESPACE: Default namespace
            FLEET_NAMESPACE: Restrict watches to a single namespace
            FLEET_DNS_DOMAIN: Base domain injected into plugin values
            FLEET_EXPRESSION_EVALUATION: Enable expression-over-self options
            FLEET_HELM_BINARY: Path to the helm binary
            FLEET_HELM_TIMEOUT: Helm operation timeout in seconds
            FLEET_MAX_WORKERS: Size of the reconcile worker pool
            FLEET_STATUS_INTERVAL: Workload status polling interval in seconds
        """
        config_dict = base_config.copy() if base_config else {}
        kube = dict(config_dict.get("kubernetes", {}))
        helm = dict(config_dict.get("helm", {}))

        if kubeconfig := os.environ.get("FLEET_K8S_KUBECONFIG"):
            kube["kubeconfig"] = kubeconfig
        if context := os.environ.get("FLEET_K8S_CONTEXT"):
            kube["context"] = context
        if namespace := os.environ.get("FLEET_K8S_NAMESPACE"):
            kube["namespace"] = namespace

        if watch_namespace := os.environ.get("FLEET_NAMESPACE"):
            config_dict["watch_namespace"] = watch_namespace
        if dns_domain := os.environ.get("FLEET_DNS_DOMAIN"):
            config_dict["dns_domain"] = dns_domain
        if expression_flag := os.environ.get("FLEET_EXPRESSION_EVALUATION"):
            config_dict["expression_evaluation_enabled"] = expression_flag.lower() in _TRUTHY

        if binary := os.environ.get("FLEET_HELM_BINARY"):
            helm["binary"] = binary
        if helm_timeout := os.environ.get("FLEET_HELM_TIMEOUT"):
            helm["timeout"] = int(helm_timeout)

        if max_workers := os.environ.get("FLEET_MAX_WORKERS"):
            config_dict["max_workers"] = int(max_workers)
        if status_interval := os.environ.get("FLEET_STATUS_INTERVAL"):
            config_dict["status_interval"] = int(status_interval)

        config_dict["kubernetes"] = kube
        config_dict["helm"] = helm
        return cls.model_validate(config_dict)
