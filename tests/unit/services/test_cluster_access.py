"""Unit tests for target cluster access."""

from __future__ import annotations

import base64
import os
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from fleet_plugin_operator.exceptions import ClusterAccessError, ClusterNotReadyError
from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError, KubernetesNotFoundError
from fleet_plugin_operator.models.plugin import Plugin
from fleet_plugin_operator.services.cluster_access import ClusterClientFactory

KUBECONFIG = b"apiVersion: v1\nkind: Config\n"


@pytest.fixture
def helm() -> MagicMock:
    return MagicMock()


@pytest.fixture
def factory(mock_store: MagicMock, helm: MagicMock, mock_k8s_client: MagicMock) -> ClusterClientFactory:
    return ClusterClientFactory(mock_store, KubernetesConfig(kubeconfig="/etc/kube/config"), helm, mock_k8s_client)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestClusterClientFactory:
    """Tests for ClusterClientFactory.get_client_for."""

    def test_control_plane(
        self, factory: ClusterClientFactory, helm: MagicMock, mock_k8s_client: MagicMock, plugin_obj: dict[str, Any]
    ) -> None:
        """Should reuse the control-plane client without a cluster name."""
        plugin_obj["spec"]["clusterName"] = ""

        access = factory.get_client_for(Plugin.from_k8s_object(plugin_obj))

        assert access.client is mock_k8s_client
        assert access.cluster_name == ""
        helm.with_kubeconfig.assert_called_once_with("/etc/kube/config")
        access.close()
        mock_k8s_client.close.assert_not_called()

    def test_remote_cluster(
        self,
        factory: ClusterClientFactory,
        mock_store: MagicMock,
        helm: MagicMock,
        plugin_obj: dict[str, Any],
        cluster_obj: dict[str, Any],
    ) -> None:
        """Should build clients from the cluster's kubeconfig secret."""
        mock_store.get.return_value = cluster_obj
        mock_store.get_secret_data.return_value = {"kubeconfig": base64.b64encode(KUBECONFIG).decode()}
        remote = MagicMock()

        with patch(
            "fleet_plugin_operator.services.cluster_access.KubernetesClient.from_kubeconfig", return_value=remote
        ) as from_kubeconfig:
            access = factory.get_client_for(Plugin.from_k8s_object(plugin_obj))

        assert from_kubeconfig.call_args.args[0] == KUBECONFIG
        assert access.client is remote
        path = access.kubeconfig_path
        assert path is not None
        with open(path, "rb") as f:
            assert f.read() == KUBECONFIG
        helm.with_kubeconfig.assert_called_once_with(path)

        with access:
            pass

        remote.close.assert_called_once()
        assert not os.path.exists(path)

    def test_cluster_missing(
        self, factory: ClusterClientFactory, mock_store: MagicMock, plugin_obj: dict[str, Any]
    ) -> None:
        """Should fail when the cluster cannot be read."""
        mock_store.get.side_effect = KubernetesNotFoundError(resource_type="Cluster", resource_name="cluster-a")

        with pytest.raises(ClusterAccessError, match="Failed to get cluster cluster-a"):
            factory.get_client_for(Plugin.from_k8s_object(plugin_obj))

    def test_cluster_not_ready(
        self, factory: ClusterClientFactory, mock_store: MagicMock, plugin_obj: dict[str, Any], cluster_obj: dict[str, Any]
    ) -> None:
        """Should refuse clusters that are not Ready."""
        cluster_obj["status"]["statusConditions"]["conditions"][0]["status"] = "False"
        mock_store.get.return_value = cluster_obj

        with pytest.raises(ClusterNotReadyError, match="cluster cluster-a is not ready"):
            factory.get_client_for(Plugin.from_k8s_object(plugin_obj))

    def test_secret_unreadable(
        self, factory: ClusterClientFactory, mock_store: MagicMock, plugin_obj: dict[str, Any], cluster_obj: dict[str, Any]
    ) -> None:
        """Should fail when the kubeconfig secret cannot be read."""
        mock_store.get.return_value = cluster_obj
        mock_store.get_secret_data.side_effect = KubernetesError("forbidden")

        with pytest.raises(ClusterAccessError, match="Failed to get secret for cluster cluster-a"):
            factory.get_client_for(Plugin.from_k8s_object(plugin_obj))

    def test_secret_without_kubeconfig(
        self, factory: ClusterClientFactory, mock_store: MagicMock, plugin_obj: dict[str, Any], cluster_obj: dict[str, Any]
    ) -> None:
        """Should fail when the secret lacks the kubeconfig key."""
        mock_store.get.return_value = cluster_obj
        mock_store.get_secret_data.return_value = {}

        with pytest.raises(ClusterAccessError, match="secret has no kubeconfig key"):
            factory.get_client_for(Plugin.from_k8s_object(plugin_obj))
