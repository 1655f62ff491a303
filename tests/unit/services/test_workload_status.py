"""Unit tests for workload status collection."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from fleet_plugin_operator.integrations.kubernetes.models.helm import HelmRelease
from fleet_plugin_operator.models.conditions import ConditionType, false_condition, true_condition
from fleet_plugin_operator.models.plugin import Plugin
from fleet_plugin_operator.services.workload_status import (
    WorkloadStatusCollector,
    cron_job_ready,
    daemon_set_ready,
    job_ready,
    pods_ready,
    replicas_ready,
)

MANIFEST = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
---
apiVersion: apps/v1
kind: DaemonSet
metadata:
  name: agent
  namespace: kube-system
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
---
apiVersion: example.com/v1
kind: Alertmanager
metadata:
  name: fake
"""


def _release(manifest: str = MANIFEST) -> HelmRelease:
    return HelmRelease(name="demo", namespace="web", revision=1, status="deployed", manifest=manifest)


@pytest.mark.unit
class TestReadinessRules:
    """Tests for per-kind readiness rules."""

    def test_replicas_ready(self) -> None:
        """Should require ready, total and available replicas to match."""
        assert replicas_ready({"status": {"replicas": 2, "readyReplicas": 2, "availableReplicas": 2}})
        assert not replicas_ready({"status": {"replicas": 2, "readyReplicas": 1, "availableReplicas": 1}})
        assert replicas_ready({"status": {}})

    def test_daemon_set_ready(self) -> None:
        """Should compare ready pods with desired and available pods."""
        assert daemon_set_ready({"status": {"desiredNumberScheduled": 3, "numberReady": 3, "numberAvailable": 3}})
        assert not daemon_set_ready({"status": {"desiredNumberScheduled": 3, "numberReady": 3, "numberAvailable": 2}})

    def test_job_and_cron_job(self) -> None:
        """Should use the completion and last success times."""
        assert job_ready({"status": {"completionTime": "2024-01-01T00:00:00Z"}})
        assert not job_ready({"status": {}})
        assert cron_job_ready({"status": {"lastSuccessfulTime": "2024-01-01T00:00:00Z"}})
        assert not cron_job_ready({})

    def test_pods_ready(self) -> None:
        """Should require every pod to be running."""
        assert pods_ready([{"status": {"phase": "Running"}}])
        assert not pods_ready([{"status": {"phase": "Running"}}, {"status": {"phase": "Pending"}}])


@pytest.mark.unit
@pytest.mark.kubernetes
class TestWorkloadStatusCollector:
    """Tests for WorkloadStatusCollector."""

    def test_collect_only_workloads(self, mock_k8s_client: MagicMock) -> None:
        """Should inspect allow-listed kinds in their namespaces."""
        mock_k8s_client.apps_v1.read_namespaced_deployment_status.return_value = {
            "status": {"replicas": 1, "readyReplicas": 1, "availableReplicas": 1}
        }
        mock_k8s_client.apps_v1.read_namespaced_daemon_set_status.return_value = {
            "status": {"desiredNumberScheduled": 2, "numberReady": 1, "numberAvailable": 1}
        }

        status = WorkloadStatusCollector(mock_k8s_client).collect(_release())

        assert status.ready == ["Deployment/web"]
        assert status.not_ready == ["DaemonSet/agent"]
        assert status.message == "Workload is not ready: DaemonSet/agent"
        mock_k8s_client.apps_v1.read_namespaced_deployment_status.assert_called_once_with("web", "web")
        mock_k8s_client.apps_v1.read_namespaced_daemon_set_status.assert_called_once_with("agent", "kube-system")
        mock_k8s_client.core_v1.list_namespaced_pod.assert_not_called()

    def test_unreadable_workload_is_not_ready(self, mock_k8s_client: MagicMock) -> None:
        """Should count fetch failures as not ready."""
        mock_k8s_client.apps_v1.read_namespaced_deployment_status.side_effect = RuntimeError("boom")
        manifest = "apiVersion: apps/v1\nkind: Deployment\nmetadata:\n  name: web\n"

        status = WorkloadStatusCollector(mock_k8s_client).collect(_release(manifest))

        assert status.not_ready == ["Deployment/web"]
        mock_k8s_client.translate_api_exception.assert_called_once()

    def test_alertmanager_pods(self, mock_k8s_client: MagicMock) -> None:
        """Should judge Alertmanagers by their release pods."""
        pods = MagicMock()
        pods.items = [{"status": {"phase": "Running"}}]
        mock_k8s_client.core_v1.list_namespaced_pod.return_value = pods
        manifest = "apiVersion: monitoring.coreos.com/v1\nkind: Alertmanager\nmetadata:\n  name: am\n"

        status = WorkloadStatusCollector(mock_k8s_client).collect(_release(manifest))

        assert status.ready == ["Alertmanager/am"]
        selector = mock_k8s_client.core_v1.list_namespaced_pod.call_args.kwargs["label_selector"]
        assert "meta.helm.sh/release-name=am" in selector
        assert "!batch.kubernetes.io/job-name" in selector

    def test_reconcile_sets_condition(self, mock_k8s_client: MagicMock, plugin_obj: dict[str, Any]) -> None:
        """Should set WorkloadReady after a successful release step."""
        plugin = Plugin.from_k8s_object(plugin_obj)
        plugin.conditions.set(false_condition(ConditionType.HELM_RECONCILE_FAILED))

        WorkloadStatusCollector(mock_k8s_client).reconcile(plugin, _release(""))

        condition = plugin.conditions.get(ConditionType.WORKLOAD_READY)
        assert condition is not None
        assert condition.is_true()
        assert condition.message == "Workload is running"

    def test_reconcile_skips_after_failure(self, mock_k8s_client: MagicMock, plugin_obj: dict[str, Any]) -> None:
        """Should leave the condition untouched when the release step failed."""
        plugin = Plugin.from_k8s_object(plugin_obj)
        plugin.conditions.set(true_condition(ConditionType.HELM_RECONCILE_FAILED))

        WorkloadStatusCollector(mock_k8s_client).reconcile(plugin, _release())

        assert plugin.conditions.get(ConditionType.WORKLOAD_READY) is None

    def test_reconcile_skips_without_release(self, mock_k8s_client: MagicMock, plugin_obj: dict[str, Any]) -> None:
        """Should do nothing while the release is missing."""
        plugin = Plugin.from_k8s_object(plugin_obj)
        plugin.conditions.set(false_condition(ConditionType.HELM_RECONCILE_FAILED))

        WorkloadStatusCollector(mock_k8s_client).reconcile(plugin, None)

        assert plugin.conditions.get(ConditionType.WORKLOAD_READY) is None
