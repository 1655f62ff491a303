"""Process-wide wiring of the reconcilers.

Handlers run on kopf's worker threads and share one ``OperatorRuntime``
built at startup.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

import structlog

from fleet_plugin_operator.constants import ANNOTATION_RECONCILE
from fleet_plugin_operator.core.config.models import OperatorConfig
from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesConnectionError
from fleet_plugin_operator.integrations.kubernetes.helm_client import HelmClient
from fleet_plugin_operator.models.base import now_timestamp
from fleet_plugin_operator.services.cluster_access import ClusterClientFactory
from fleet_plugin_operator.services.plugin_reconciler import PluginReconciler
from fleet_plugin_operator.services.preset_reconciler import PresetReconciler
from fleet_plugin_operator.services.rate_limiter import ItemRateLimiter
from fleet_plugin_operator.services.store import ResourceStore
from fleet_plugin_operator.services.tracking import DependencyTracker
from fleet_plugin_operator.services.values import ValueResolver

logger = structlog.get_logger()


def _wait_for_api(client: KubernetesClient) -> None:
    """Block until the control-plane API server answers.

    Raises:
        KubernetesConnectionError: If it stays unreachable after all retries.
    """

    @client.make_retry_decorator()
    def check() -> None:
        if not client.check_connection():
            raise KubernetesConnectionError(message="control-plane API server is not reachable")

    check()


@dataclass
class OperatorRuntime:
    """Shared services of a running operator."""

    config: OperatorConfig
    client: KubernetesClient
    store: ResourceStore
    plugins: PluginReconciler
    presets: PresetReconciler
    rate_limiter: ItemRateLimiter

    @classmethod
    def from_config(cls, config: OperatorConfig) -> OperatorRuntime:
        """Build all services against the control-plane cluster.

        Raises:
            KubernetesConnectionError: If the control plane is unreachable.
            HelmBinaryNotFoundError: If no helm binary can be found.
        """
        client = KubernetesClient(config.kubernetes)
        _wait_for_api(client)
        store = ResourceStore(client)
        tracker = DependencyTracker(store)
        helm = HelmClient(config.helm.binary, kubeconfig=config.kubernetes.kubeconfig, timeout=config.helm.timeout)
        logger.info("helm_client_ready", version=helm.get_version())
        clusters = ClusterClientFactory(store, config.kubernetes, helm, client)
        resolver = ValueResolver(
            store,
            tracker,
            expression_evaluation_enabled=config.expression_evaluation_enabled,
            dns_domain=config.dns_domain,
        )
        plugins = PluginReconciler(
            store, clusters, resolver, tracker, config.helm, dns_domain=config.dns_domain
        )
        return cls(
            config=config,
            client=client,
            store=store,
            plugins=plugins,
            presets=PresetReconciler(store),
            rate_limiter=ItemRateLimiter(config.rate_limit),
        )

    def enqueue(self, kind: str, name: str, namespace: str) -> None:
        """Trigger a reconcile by touching the object's reconcile annotation."""
        patch = {"metadata": {"annotations": {ANNOTATION_RECONCILE: now_timestamp()}}}
        self.store.patch(kind, name, patch, namespace)
        logger.debug("object_enqueued", kind=kind, name=name, namespace=namespace)

    def close(self) -> None:
        self.client.close()


_runtime: OperatorRuntime | None = None
_lock = threading.Lock()


def start_runtime(config: OperatorConfig) -> OperatorRuntime:
    """Build the shared runtime, replacing any previous one."""
    global _runtime
    with _lock:
        if _runtime is not None:
            _runtime.close()
        _runtime = OperatorRuntime.from_config(config)
        return _runtime


def get_runtime() -> OperatorRuntime:
    """The runtime built at startup.

    Raises:
        RuntimeError: If the operator has not been started.
    """
    if _runtime is None:
        raise RuntimeError("operator runtime is not started")
    return _runtime


def stop_runtime() -> None:
    global _runtime
    with _lock:
        if _runtime is not None:
            _runtime.close()
            _runtime = None
