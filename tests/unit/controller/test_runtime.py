"""Unit tests for the shared operator runtime."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from fleet_plugin_operator.controller import runtime as runtime_module
from fleet_plugin_operator.controller.runtime import (
    OperatorRuntime,
    _wait_for_api,
    get_runtime,
    start_runtime,
    stop_runtime,
)
from fleet_plugin_operator.core.config.models import OperatorConfig
from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient
from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesConnectionError
from fleet_plugin_operator.services.plugin_reconciler import PluginReconciler
from fleet_plugin_operator.services.preset_reconciler import PresetReconciler


@pytest.fixture
def mock_clients() -> Iterator[tuple[MagicMock, MagicMock]]:
    with (
        patch("fleet_plugin_operator.controller.runtime.KubernetesClient") as k8s,
        patch("fleet_plugin_operator.controller.runtime.HelmClient") as helm,
    ):
        yield k8s, helm


@pytest.fixture(autouse=True)
def _reset_runtime() -> Iterator[None]:
    yield
    runtime_module._runtime = None


@pytest.mark.unit
class TestOperatorRuntime:
    """Tests for OperatorRuntime."""

    def test_from_config(self, mock_clients: tuple[MagicMock, MagicMock]) -> None:
        """Should wire the reconcilers against the control plane."""
        k8s, helm = mock_clients
        config = OperatorConfig.model_validate(
            {"kubernetes": {"kubeconfig": "/etc/kube/config"}, "helm": {"binary": "/usr/bin/helm", "timeout": 120}}
        )

        runtime = OperatorRuntime.from_config(config)

        k8s.assert_called_once_with(config.kubernetes)
        helm.assert_called_once_with("/usr/bin/helm", kubeconfig="/etc/kube/config", timeout=120)
        assert runtime.client is k8s.return_value
        assert isinstance(runtime.plugins, PluginReconciler)
        assert isinstance(runtime.presets, PresetReconciler)

    def test_enqueue(self, mock_clients: tuple[MagicMock, MagicMock]) -> None:
        """Should touch the reconcile annotation."""
        runtime = OperatorRuntime.from_config(OperatorConfig())
        runtime.store = MagicMock()

        with patch("fleet_plugin_operator.controller.runtime.now_timestamp", return_value="2024-01-01T00:00:00Z"):
            runtime.enqueue("Plugin", "demo", "org")

        runtime.store.patch.assert_called_once_with(
            "Plugin",
            "demo",
            {"metadata": {"annotations": {"greenhouse.sap/reconcile": "2024-01-01T00:00:00Z"}}},
            "org",
        )


@pytest.mark.unit
class TestRuntimeLifecycle:
    """Tests for the process-wide runtime."""

    def test_not_started(self) -> None:
        """Should refuse access before startup."""
        with pytest.raises(RuntimeError, match="not started"):
            get_runtime()

    def test_start_and_stop(self, mock_clients: tuple[MagicMock, MagicMock]) -> None:
        """Should build, replace and close the runtime."""
        first = start_runtime(OperatorConfig())
        assert get_runtime() is first

        second = start_runtime(OperatorConfig())
        assert get_runtime() is second
        first.client.close.assert_called()

        stop_runtime()
        with pytest.raises(RuntimeError):
            get_runtime()


@pytest.mark.unit
class TestWaitForApi:
    """Tests for the startup connectivity check."""

    def test_reachable(self) -> None:
        """Should return once the API server answers."""
        client = KubernetesClient(KubernetesConfig(), api_client=MagicMock())

        with patch.object(KubernetesClient, "check_connection", side_effect=[False, True]) as check, patch(
            "tenacity.nap.time.sleep"
        ):
            _wait_for_api(client)

        assert check.call_count == 2

    def test_unreachable(self) -> None:
        """Should give up after the configured attempts."""
        client = KubernetesClient(KubernetesConfig(retry_attempts=2), api_client=MagicMock())

        with patch.object(KubernetesClient, "check_connection", return_value=False) as check, patch(
            "tenacity.nap.time.sleep"
        ), pytest.raises(KubernetesConnectionError, match="not reachable"):
            _wait_for_api(client)

        assert check.call_count == 2
