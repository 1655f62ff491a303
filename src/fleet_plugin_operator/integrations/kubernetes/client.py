"""Kubernetes API client wrapper.

Wraps the official kubernetes Python client for both the control-plane cluster
and the remote target clusters of plugins. Each instance owns its own
``ApiClient`` so that clients for different clusters can coexist in one
process.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
import yaml
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fleet_plugin_operator.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import (
        ApiClient,
        AppsV1Api,
        BatchV1Api,
        CoreV1Api,
        CustomObjectsApi,
        VersionApi,
    )

    from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig

logger = structlog.get_logger()

# Attempts for optimistic-concurrency read-modify-write loops
CONFLICT_RETRY_ATTEMPTS = 5


class KubernetesClient:
    """Kubernetes API client bound to a single cluster.

    Provides:
    - Lazy API group initialization on a dedicated ``ApiClient``
    - Construction from a kubeconfig file, in-cluster config or raw kubeconfig
    - Automatic retry with tenacity for transient and conflict errors
    - Consistent error translation to custom exceptions
    - Context manager support

    Example:
        ```python
        config = KubernetesConfig(kubeconfig="~/.kube/config")
        with KubernetesClient(config) as client:
            plugins = client.custom_objects.list_namespaced_custom_object(
                "greenhouse.sap", "v1alpha1", "demo", "plugins"
            )
        ```
    """

    def __init__(
        self,
        config: KubernetesConfig,
        api_client: ApiClient | None = None,
        cluster_name: str = "",
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection settings.
            api_client: Pre-built ``ApiClient``. If None, the kubeconfig from
                ``config`` or the in-cluster service account is used.
            cluster_name: Name of the target cluster. Empty for the control plane.
        """
        self._config = config
        self._retries = config.retry_attempts
        self._cluster_name = cluster_name
        self._current_context: str | None = None

        self._core_v1: CoreV1Api | None = None
        self._apps_v1: AppsV1Api | None = None
        self._batch_v1: BatchV1Api | None = None
        self._custom_objects: CustomObjectsApi | None = None
        self._version_api: VersionApi | None = None

        if api_client is None:
            api_client = self._load_api_client()
        self._api_client = api_client

        logger.debug(
            "kubernetes_client_initialized",
            cluster=cluster_name or "control-plane",
            context=self._current_context,
        )

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: str | bytes,
        config: KubernetesConfig,
        cluster_name: str,
    ) -> KubernetesClient:
        """Build a client for a remote cluster from raw kubeconfig content.

        Args:
            kubeconfig: Kubeconfig YAML as stored in the cluster Secret.
            config: Connection settings (timeouts, retries).
            cluster_name: Name of the remote cluster.

        Raises:
            KubernetesConnectionError: If the kubeconfig cannot be parsed.
        """
        from kubernetes import config as k8s_config
        from kubernetes.config import ConfigException

        try:
            config_dict = yaml.safe_load(kubeconfig)
            if not isinstance(config_dict, dict):
                raise ConfigException("kubeconfig is not a mapping")
            api_client = k8s_config.new_client_from_config_dict(config_dict)
        except (yaml.YAMLError, ConfigException) as e:
            raise KubernetesConnectionError(
                message=f"Invalid kubeconfig for cluster '{cluster_name}'",
                original_error=e,
            ) from e
        return cls(config, api_client=api_client, cluster_name=cluster_name)

    def _load_api_client(self) -> ApiClient:
        """Load configuration from kubeconfig or fall back to in-cluster."""
        from kubernetes import client as k8s_client
        from kubernetes import config as k8s_config
        from kubernetes.config import ConfigException

        try:
            api_client = k8s_config.new_client_from_config(
                config_file=self._config.kubeconfig,
                context=self._config.context,
            )
            self._current_context = self._config.context or "current-context"
            logger.debug(
                "loaded_kubeconfig",
                context=self._config.context,
                kubeconfig=self._config.kubeconfig,
            )
            return api_client
        except ConfigException:
            try:
                k8s_config.load_incluster_config()
                self._current_context = "in-cluster"
                logger.debug("loaded_incluster_config")
                return k8s_client.ApiClient()
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e

    # =========================================================================
    # Lazy API Group Accessors
    # =========================================================================

    @property
    def api_client(self) -> ApiClient:
        """The underlying ``ApiClient``."""
        return self._api_client

    @property
    def core_v1(self) -> CoreV1Api:
        """CoreV1Api (pods, services, secrets)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api(self._api_client)
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """AppsV1Api (deployments, statefulsets, daemonsets, replicasets)."""
        if self._apps_v1 is None:
            from kubernetes.client import AppsV1Api

            self._apps_v1 = AppsV1Api(self._api_client)
        return self._apps_v1

    @property
    def batch_v1(self) -> BatchV1Api:
        """BatchV1Api (jobs, cronjobs)."""
        if self._batch_v1 is None:
            from kubernetes.client import BatchV1Api

            self._batch_v1 = BatchV1Api(self._api_client)
        return self._batch_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """CustomObjectsApi for CRD-backed resources."""
        if self._custom_objects is None:
            from kubernetes.client import CustomObjectsApi

            self._custom_objects = CustomObjectsApi(self._api_client)
        return self._custom_objects

    @property
    def version_api(self) -> VersionApi:
        """VersionApi for cluster version info."""
        if self._version_api is None:
            from kubernetes.client import VersionApi

            self._version_api = VersionApi(self._api_client)
        return self._version_api

    def _invalidate_api_cache(self) -> None:
        self._core_v1 = None
        self._apps_v1 = None
        self._batch_v1 = None
        self._custom_objects = None
        self._version_api = None

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate a kubernetes ApiException to a custom exception.

        Args:
            e: The original exception.
            resource_type: Kind of the resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from kubernetes.client import ApiException

        if isinstance(e, KubernetesError):
            return e

        if not isinstance(e, ApiException):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        status = e.status

        if status in (401, 403):
            return KubernetesAuthError(
                message=e.reason or "Authentication/authorization failed",
                status_code=status,
                reason=e.reason,
            )

        if status == 404:
            return KubernetesNotFoundError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 409:
            return KubernetesConflictError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (400, 422):
            message, causes = _parse_status_body(e.body)
            return KubernetesValidationError(
                message=message or e.reason or "Validation failed",
                causes=causes,
                status_code=status,
            )

        return KubernetesError(
            message=e.reason or f"Kubernetes API error: {status}",
            status_code=status,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    # =========================================================================
    # Retry Decorators
    # =========================================================================

    def make_retry_decorator(self) -> Any:
        """Create a retry decorator for transient connection errors.

        Returns:
            A tenacity retry decorator configured with exponential backoff.
        """
        return retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    @staticmethod
    def make_conflict_retry_decorator() -> Any:
        """Create a retry decorator for optimistic-concurrency conflicts.

        The wrapped function must perform the complete read, mutate and
        conditional write cycle so that each attempt works on fresh data.
        """
        return retry(
            retry=retry_if_exception_type(KubernetesConflictError),
            stop=stop_after_attempt(CONFLICT_RETRY_ATTEMPTS),
            wait=wait_exponential(multiplier=0.01, max=1),
            reraise=True,
        )

    # =========================================================================
    # Connection Check
    # =========================================================================

    def check_connection(self) -> bool:
        """Check if the API server answers."""
        try:
            self.version_api.get_code()
            return True
        except Exception:
            return False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def cluster_name(self) -> str:
        """Name of the cluster this client talks to. Empty for the control plane."""
        return self._cluster_name

    @property
    def default_namespace(self) -> str:
        """Default namespace from config."""
        return self._config.namespace

    @property
    def timeout(self) -> int:
        """Configured request timeout."""
        return self._config.timeout

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the client and release pooled connections."""
        self._invalidate_api_cache()
        close = getattr(self._api_client, "close", None)
        if callable(close):
            close()
        logger.debug("kubernetes_client_closed", cluster=self._cluster_name or "control-plane")

    def __enter__(self) -> KubernetesClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _parse_status_body(body: Any) -> tuple[str | None, list[dict[str, Any]]]:
    """Extract message and causes from a ``Status`` response body."""
    if not body:
        return None, []
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None, []
    if not isinstance(data, dict):
        return None, []
    causes = (data.get("details") or {}).get("causes") or []
    return data.get("message"), [c for c in causes if isinstance(c, dict)]
