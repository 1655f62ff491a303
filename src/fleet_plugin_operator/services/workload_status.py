"""Workload health of the resources deployed by a Plugin's release.

Every supported kind maps to a ``(fetch, is_ready)`` pair. The allow-list of
kinds and the readiness rule of each kind are kept together in
``WORKLOAD_KINDS``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from fleet_plugin_operator.models.conditions import ConditionType, false_condition, true_condition
from fleet_plugin_operator.services.chart_engine import parse_manifest

if TYPE_CHECKING:
    from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient
    from fleet_plugin_operator.integrations.kubernetes.models.helm import HelmRelease
    from fleet_plugin_operator.models.plugin import Plugin

logger = structlog.get_logger()

HELM_RELEASE_NAME_LABEL = "meta.helm.sh/release-name"
HELM_RELEASE_NAMESPACE_LABEL = "meta.helm.sh/release-namespace"
JOB_NAME_LABEL = "batch.kubernetes.io/job-name"

ALERTMANAGER_GROUP = "monitoring.coreos.com"
ALERTMANAGER_VERSION = "v1"

Fetcher = Callable[["KubernetesClient", str, str], Any]
ReadyRule = Callable[[Any], bool]


# =============================================================================
# Readiness rules
# =============================================================================


def _status(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def replicas_ready(obj: dict[str, Any]) -> bool:
    """Deployments, StatefulSets and ReplicaSets."""
    status = _status(obj)
    ready = status.get("readyReplicas") or 0
    return ready == (status.get("replicas") or 0) and ready == (status.get("availableReplicas") or 0)


def daemon_set_ready(obj: dict[str, Any]) -> bool:
    status = _status(obj)
    ready = status.get("numberReady") or 0
    return ready == (status.get("desiredNumberScheduled") or 0) and ready == (status.get("numberAvailable") or 0)


def job_ready(obj: dict[str, Any]) -> bool:
    return bool(_status(obj).get("completionTime"))


def cron_job_ready(obj: dict[str, Any]) -> bool:
    return bool(_status(obj).get("lastSuccessfulTime"))


def pod_ready(obj: dict[str, Any]) -> bool:
    return _status(obj).get("phase") == "Running"


def pods_ready(pods: list[dict[str, Any]]) -> bool:
    return all(pod_ready(pod) for pod in pods)


# =============================================================================
# Fetchers
# =============================================================================


def _serialize(client: KubernetesClient, obj: Any) -> dict[str, Any]:
    return client.api_client.sanitize_for_serialization(obj)


def _fetch_deployment(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.apps_v1.read_namespaced_deployment_status(name, namespace))


def _fetch_stateful_set(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.apps_v1.read_namespaced_stateful_set_status(name, namespace))


def _fetch_daemon_set(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.apps_v1.read_namespaced_daemon_set_status(name, namespace))


def _fetch_replica_set(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.apps_v1.read_namespaced_replica_set_status(name, namespace))


def _fetch_job(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.batch_v1.read_namespaced_job_status(name, namespace))


def _fetch_cron_job(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.batch_v1.read_namespaced_cron_job_status(name, namespace))


def _fetch_pod(client: KubernetesClient, name: str, namespace: str) -> dict[str, Any]:
    return _serialize(client, client.core_v1.read_namespaced_pod_status(name, namespace))


def _fetch_alertmanager_pods(client: KubernetesClient, name: str, namespace: str) -> list[dict[str, Any]]:
    """Pods of an Alertmanager release, excluding pods spawned by jobs."""
    selector = ",".join(
        [
            f"{HELM_RELEASE_NAME_LABEL}={name}",
            f"{HELM_RELEASE_NAMESPACE_LABEL}={namespace}",
            f"!{JOB_NAME_LABEL}",
        ]
    )
    pods = client.core_v1.list_namespaced_pod(namespace, label_selector=selector)
    return [_serialize(client, pod) for pod in pods.items]


WORKLOAD_KINDS: dict[str, tuple[Fetcher, ReadyRule]] = {
    "Pod": (_fetch_pod, pod_ready),
    "Deployment": (_fetch_deployment, replicas_ready),
    "StatefulSet": (_fetch_stateful_set, replicas_ready),
    "DaemonSet": (_fetch_daemon_set, daemon_set_ready),
    "ReplicaSet": (_fetch_replica_set, replicas_ready),
    "Job": (_fetch_job, job_ready),
    "CronJob": (_fetch_cron_job, cron_job_ready),
    "Alertmanager": (_fetch_alertmanager_pods, pods_ready),
}


def _is_workload(obj: dict[str, Any]) -> bool:
    kind = obj.get("kind")
    if kind not in WORKLOAD_KINDS:
        return False
    if kind == "Alertmanager":
        return obj.get("apiVersion") == f"{ALERTMANAGER_GROUP}/{ALERTMANAGER_VERSION}"
    return True


# =============================================================================
# Collector
# =============================================================================


@dataclass
class WorkloadStatus:
    """Aggregated readiness of a release's workload resources."""

    ready: list[str] = field(default_factory=list)
    not_ready: list[str] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return not self.not_ready

    @property
    def message(self) -> str:
        if self.is_ready:
            return "Workload is running"
        return "Workload is not ready: " + ", ".join(self.not_ready)


class WorkloadStatusCollector:
    """Inspects the workload resources of a release on its target cluster."""

    def __init__(self, client: KubernetesClient) -> None:
        self._client = client
        self._log = logger.bind(entity="workload_status")

    def collect(self, release: HelmRelease) -> WorkloadStatus:
        """Fetch every workload of the release and apply its readiness rule.

        Objects that cannot be read are counted as not ready.
        """
        result = WorkloadStatus()
        for obj in parse_manifest(release.manifest):
            if not _is_workload(obj):
                continue
            kind = obj["kind"]
            metadata = obj.get("metadata") or {}
            name = metadata.get("name", "")
            namespace = metadata.get("namespace") or release.namespace
            workload_id = f"{kind}/{name}"
            fetch, is_ready = WORKLOAD_KINDS[kind]
            try:
                live = fetch(self._client, name, namespace)
            except Exception as e:
                error = self._client.translate_api_exception(e, kind, name, namespace)
                self._log.warning("workload_fetch_failed", workload=workload_id, error=str(error))
                result.not_ready.append(workload_id)
                continue
            if is_ready(live):
                result.ready.append(workload_id)
            else:
                result.not_ready.append(workload_id)
        return result

    def reconcile(self, plugin: Plugin, release: HelmRelease | None) -> None:
        """Set the WorkloadReady condition of the Plugin.

        Nothing is collected while the release is missing or the last
        release step failed.
        """
        if release is None or not plugin.conditions.is_false(ConditionType.HELM_RECONCILE_FAILED):
            return
        try:
            status = self.collect(release)
        except yaml.YAMLError as e:
            plugin.conditions.set(
                false_condition(ConditionType.WORKLOAD_READY, message=f"failed to parse release manifest: {e}")
            )
            return
        self._log.debug(
            "workload_status_collected", plugin=plugin.name, ready=len(status.ready), not_ready=status.not_ready
        )
        if status.is_ready:
            plugin.conditions.set(true_condition(ConditionType.WORKLOAD_READY, message=status.message))
        else:
            plugin.conditions.set(false_condition(ConditionType.WORKLOAD_READY, message=status.message))
