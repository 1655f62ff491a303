"""Unit tests for Kubernetes client."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from fleet_plugin_operator.integrations.kubernetes.client import CONFLICT_RETRY_ATTEMPTS, KubernetesClient
from fleet_plugin_operator.integrations.kubernetes.config import KubernetesConfig
from fleet_plugin_operator.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)


@pytest.fixture
def client() -> KubernetesClient:
    """Client on a mocked ApiClient."""
    return KubernetesClient(KubernetesConfig(namespace="greenhouse", timeout=30), api_client=MagicMock())


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesClientInitialization:
    """Test KubernetesClient initialization."""

    @patch("kubernetes.config.new_client_from_config")
    def test_init_with_kubeconfig(self, mock_new_client: MagicMock) -> None:
        """Test client initialization from a kubeconfig file."""
        config = KubernetesConfig(kubeconfig="/path/to/config", context="test-context")
        client = KubernetesClient(config)

        mock_new_client.assert_called_once_with(config_file="/path/to/config", context="test-context")
        assert client.api_client is mock_new_client.return_value
        assert client._current_context == "test-context"
        assert client._retries == 3
        assert client.cluster_name == ""

    @patch("kubernetes.client.ApiClient")
    @patch("kubernetes.config.load_incluster_config")
    @patch("kubernetes.config.new_client_from_config")
    def test_init_fallback_to_incluster(
        self, mock_new_client: MagicMock, mock_incluster: MagicMock, mock_api_client: MagicMock
    ) -> None:
        """Test client falls back to in-cluster config."""
        from kubernetes.config import ConfigException

        mock_new_client.side_effect = ConfigException("Not found")

        client = KubernetesClient(KubernetesConfig())

        mock_incluster.assert_called_once()
        assert client.api_client is mock_api_client.return_value
        assert client._current_context == "in-cluster"

    @patch("kubernetes.config.load_incluster_config")
    @patch("kubernetes.config.new_client_from_config")
    def test_init_connection_error(self, mock_new_client: MagicMock, mock_incluster: MagicMock) -> None:
        """Test client raises KubernetesConnectionError when config loading fails."""
        from kubernetes.config import ConfigException

        mock_new_client.side_effect = ConfigException("No config")
        mock_incluster.side_effect = ConfigException("Not in cluster")

        with pytest.raises(KubernetesConnectionError) as exc_info:
            KubernetesClient(KubernetesConfig())

        assert "Cannot load Kubernetes configuration" in str(exc_info.value)

    @patch("kubernetes.config.new_client_from_config_dict")
    def test_from_kubeconfig(self, mock_from_dict: MagicMock) -> None:
        """Test a remote client is built from raw kubeconfig content."""
        kubeconfig = b"apiVersion: v1\nkind: Config\nclusters: []\n"

        client = KubernetesClient.from_kubeconfig(kubeconfig, KubernetesConfig(), "cluster-a")

        mock_from_dict.assert_called_once_with({"apiVersion": "v1", "kind": "Config", "clusters": []})
        assert client.cluster_name == "cluster-a"
        assert client.api_client is mock_from_dict.return_value

    @pytest.mark.parametrize("kubeconfig", [b"- just\n- a list\n", b"key: [unclosed\n"])
    def test_from_kubeconfig_invalid(self, kubeconfig: bytes) -> None:
        """Test unparsable kubeconfigs raise a connection error."""
        with pytest.raises(KubernetesConnectionError, match="Invalid kubeconfig for cluster 'cluster-a'"):
            KubernetesClient.from_kubeconfig(kubeconfig, KubernetesConfig(), "cluster-a")


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesClientAPIProperties:
    """Test KubernetesClient lazy API properties."""

    def test_core_v1_lazy_loading(self, client: KubernetesClient) -> None:
        """Test CoreV1Api is lazily loaded on the client's ApiClient."""
        assert client._core_v1 is None

        with patch("kubernetes.client.CoreV1Api") as mock_api:
            _ = client.core_v1
            mock_api.assert_called_once_with(client.api_client)
            assert client._core_v1 is not None

    @pytest.mark.parametrize(
        ("attr", "api"),
        [
            ("apps_v1", "AppsV1Api"),
            ("batch_v1", "BatchV1Api"),
            ("custom_objects", "CustomObjectsApi"),
            ("version_api", "VersionApi"),
        ],
    )
    def test_api_groups(self, client: KubernetesClient, attr: str, api: str) -> None:
        """Test every API group is built once and cached."""
        with patch(f"kubernetes.client.{api}") as mock_api:
            first = getattr(client, attr)
            second = getattr(client, attr)

        mock_api.assert_called_once_with(client.api_client)
        assert first is second


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesClientErrorTranslation:
    """Test KubernetesClient error translation."""

    def test_translate_401_to_auth_error(self) -> None:
        """Test 401 translates to KubernetesAuthError."""
        from kubernetes.client import ApiException

        result = KubernetesClient.translate_api_exception(ApiException(status=401, reason="Unauthorized"))

        assert isinstance(result, KubernetesAuthError)
        assert result.status_code == 401

    def test_translate_403_to_auth_error(self) -> None:
        """Test 403 translates to KubernetesAuthError."""
        from kubernetes.client import ApiException

        result = KubernetesClient.translate_api_exception(ApiException(status=403, reason="Forbidden"))

        assert isinstance(result, KubernetesAuthError)
        assert result.status_code == 403

    def test_translate_404_to_not_found_error(self) -> None:
        """Test 404 translates to KubernetesNotFoundError."""
        from kubernetes.client import ApiException

        result = KubernetesClient.translate_api_exception(
            ApiException(status=404), resource_type="Plugin", resource_name="demo", namespace="org"
        )

        assert isinstance(result, KubernetesNotFoundError)
        assert result.resource_name == "demo"
        assert result.namespace == "org"

    def test_translate_409_to_conflict_error(self) -> None:
        """Test 409 translates to KubernetesConflictError."""
        from kubernetes.client import ApiException

        result = KubernetesClient.translate_api_exception(
            ApiException(status=409), resource_type="Plugin", resource_name="demo"
        )

        assert isinstance(result, KubernetesConflictError)
        assert result.resource_type == "Plugin"

    def test_translate_422_with_status_body(self) -> None:
        """Test 422 translates to KubernetesValidationError with causes."""
        from kubernetes.client import ApiException

        api_exc = ApiException(status=422, reason="Unprocessable Entity")
        api_exc.body = json.dumps(
            {
                "kind": "Status",
                "message": "Plugin.greenhouse.sap \"demo\" is invalid",
                "details": {"causes": [{"field": "spec.clusterName", "message": "cluster cluster-z not found"}]},
            }
        )

        result = KubernetesClient.translate_api_exception(api_exc)

        assert isinstance(result, KubernetesValidationError)
        assert result.message == 'Plugin.greenhouse.sap "demo" is invalid'
        assert result.first_cause == "cluster cluster-z not found"
        assert result.status_code == 422

    def test_translate_400_without_body(self) -> None:
        """Test 400 without a parsable body falls back to the reason."""
        from kubernetes.client import ApiException

        api_exc = ApiException(status=400, reason="Bad Request")
        api_exc.body = "not json"

        result = KubernetesClient.translate_api_exception(api_exc)

        assert isinstance(result, KubernetesValidationError)
        assert result.message == "Bad Request"
        assert result.causes == []

    def test_translate_generic_api_exception(self) -> None:
        """Test other status codes translate to KubernetesError."""
        from kubernetes.client import ApiException

        result = KubernetesClient.translate_api_exception(ApiException(status=500, reason="Internal Server Error"))

        assert type(result) is KubernetesError
        assert result.status_code == 500
        assert result.message == "Internal Server Error"

    def test_translate_non_api_exception(self) -> None:
        """Test non-ApiException translates to generic KubernetesError."""
        result = KubernetesClient.translate_api_exception(ValueError("boom"), resource_type="Plugin")

        assert type(result) is KubernetesError
        assert result.message == "boom"

    def test_translate_passes_kubernetes_errors_through(self) -> None:
        """Test already translated errors are returned unchanged."""
        error = KubernetesNotFoundError()

        assert KubernetesClient.translate_api_exception(error) is error


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesClientRetryDecorators:
    """Test the tenacity retry decorators."""

    def test_retry_decorator_retries_connection_errors(self, client: KubernetesClient) -> None:
        """Test connection errors are retried up to the configured attempts."""
        calls = MagicMock(side_effect=KubernetesConnectionError())

        @client.make_retry_decorator()
        def call() -> None:
            calls()

        with patch("tenacity.nap.time.sleep"), pytest.raises(KubernetesConnectionError):
            call()

        assert calls.call_count == 3

    def test_conflict_retry_succeeds(self) -> None:
        """Test a conflict followed by success returns the result."""
        calls = MagicMock(side_effect=[KubernetesConflictError(), "written"])

        @KubernetesClient.make_conflict_retry_decorator()
        def write() -> str:
            return calls()

        assert write() == "written"
        assert calls.call_count == 2

    def test_conflict_retry_gives_up(self) -> None:
        """Test persistent conflicts are re-raised."""
        calls = MagicMock(side_effect=KubernetesConflictError())

        @KubernetesClient.make_conflict_retry_decorator()
        def write() -> None:
            calls()

        with pytest.raises(KubernetesConflictError):
            write()

        assert calls.call_count == CONFLICT_RETRY_ATTEMPTS

    def test_conflict_retry_ignores_other_errors(self) -> None:
        """Test non-conflict errors are not retried."""
        calls = MagicMock(side_effect=KubernetesNotFoundError())

        @KubernetesClient.make_conflict_retry_decorator()
        def write() -> None:
            calls()

        with pytest.raises(KubernetesNotFoundError):
            write()

        assert calls.call_count == 1


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesClientLifecycle:
    """Test KubernetesClient connection check, properties and lifecycle."""

    def test_check_connection_success(self, client: KubernetesClient) -> None:
        """Test a responding API server."""
        with patch("kubernetes.client.VersionApi"):
            assert client.check_connection() is True

    def test_check_connection_failure(self, client: KubernetesClient) -> None:
        """Test an unreachable API server."""
        with patch("kubernetes.client.VersionApi") as mock_api:
            mock_api.return_value.get_code.side_effect = Exception("refused")
            assert client.check_connection() is False

    def test_properties(self, client: KubernetesClient) -> None:
        """Test configured properties."""
        assert client.default_namespace == "greenhouse"
        assert client.timeout == 30

    def test_close(self, client: KubernetesClient) -> None:
        """Test close releases the ApiClient and clears cached APIs."""
        with patch("kubernetes.client.CoreV1Api"):
            _ = client.core_v1

        client.close()

        assert client._core_v1 is None
        client.api_client.close.assert_called_once()

    def test_context_manager(self) -> None:
        """Test the client closes on exit."""
        api_client = MagicMock()

        with KubernetesClient(KubernetesConfig(), api_client=api_client) as client:
            assert client.api_client is api_client

        api_client.close.assert_called_once()
