"""Access to the target cluster of a Plugin.

An empty cluster name targets the control-plane cluster itself. Remote
clusters must report Ready and expose their kubeconfig in the Secret named
after the cluster.
"""

from __future__ import annotations

import base64
import os
import tempfile
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from fleet_plugin_operator.constants import CLUSTER_KIND
from fleet_plugin_operator.exceptions import ClusterAccessError, ClusterNotReadyError
from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError
from fleet_plugin_operator.models.cluster import Cluster

if TYPE_CHECKING:
    from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig
    from fleet_plugin_operator.integrations.kubernetes.helm_client import HelmClient
    from fleet_plugin_operator.models.plugin import Plugin
    from fleet_plugin_operator.services.store import ResourceStore

logger = structlog.get_logger()

KUBECONFIG_SECRET_KEY = "kubeconfig"


@dataclass
class ClusterAccess:
    """Clients bound to one target cluster.

    Attributes:
        cluster_name: Target cluster, empty for the control plane.
        client: Kubernetes API client for the cluster.
        helm: Helm client using the cluster's kubeconfig.
        kubeconfig_path: Temporary kubeconfig file owned by this handle.
    """

    cluster_name: str
    client: KubernetesClient
    helm: HelmClient
    kubeconfig_path: str | None = None

    def close(self) -> None:
        """Release the remote client and remove the temporary kubeconfig."""
        if not self.cluster_name:
            return
        self.client.close()
        if self.kubeconfig_path and os.path.exists(self.kubeconfig_path):
            os.unlink(self.kubeconfig_path)
            self.kubeconfig_path = None

    def __enter__(self) -> ClusterAccess:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class ClusterClientFactory:
    """Builds ``ClusterAccess`` handles for Plugins."""

    def __init__(
        self,
        store: ResourceStore,
        config: KubernetesConfig,
        helm: HelmClient,
        control_plane: KubernetesClient,
    ) -> None:
        self._store = store
        self._config = config
        self._helm = helm
        self._control_plane = control_plane
        self._log = logger.bind(entity="cluster_access")

    def get_client_for(self, plugin: Plugin) -> ClusterAccess:
        """Return clients for the Plugin's target cluster.

        Raises:
            ClusterAccessError: If the cluster cannot be read, is not Ready,
                or its kubeconfig is unusable.
        """
        cluster_name = plugin.spec.cluster_name
        if not cluster_name:
            return ClusterAccess(
                cluster_name="",
                client=self._control_plane,
                helm=self._helm.with_kubeconfig(self._config.kubeconfig),
            )

        namespace = plugin.namespace
        try:
            cluster = Cluster.from_k8s_object(self._store.get(CLUSTER_KIND, cluster_name, namespace))
        except KubernetesError as e:
            raise ClusterAccessError(f"Failed to get cluster {cluster_name}: {e}", cluster_name) from e

        if not cluster.is_ready:
            raise ClusterNotReadyError(cluster_name)

        try:
            data = self._store.get_secret_data(cluster_name, namespace)
        except KubernetesError as e:
            raise ClusterAccessError(
                f"Failed to get secret for cluster {cluster_name}: {e}", cluster_name
            ) from e

        encoded = data.get(KUBECONFIG_SECRET_KEY)
        if not encoded:
            raise ClusterAccessError(
                f"cannot access cluster {cluster_name}: secret has no {KUBECONFIG_SECRET_KEY} key",
                cluster_name,
            )
        kubeconfig = base64.b64decode(encoded)

        try:
            client = KubernetesClient.from_kubeconfig(kubeconfig, self._config, cluster_name)
        except KubernetesError as e:
            raise ClusterAccessError(f"cannot access cluster {cluster_name}: {e}", cluster_name) from e

        path = _write_kubeconfig(kubeconfig)
        self._log.debug("cluster_access_ready", cluster=cluster_name, namespace=namespace)
        return ClusterAccess(
            cluster_name=cluster_name,
            client=client,
            helm=self._helm.with_kubeconfig(path),
            kubeconfig_path=path,
        )


def _write_kubeconfig(content: bytes) -> str:
    """Write a kubeconfig to a private temporary file for the helm CLI."""
    with tempfile.NamedTemporaryFile(prefix="fleet-kubeconfig-", suffix=".yaml", delete=False) as f:
        f.write(content)
        return f.name
