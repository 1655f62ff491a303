"""Generic store for the platform's custom resources.

Thin wrapper over ``CustomObjectsApi`` that resolves plurals and scope from
the resource kind and translates API errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NoReturn

import structlog

from fleet_plugin_operator.constants import (
    API_GROUP,
    API_VERSION,
    CLUSTER_PLUGIN_DEFINITION_KIND,
    KIND_PLURALS,
)
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesNotFoundError

if TYPE_CHECKING:
    from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

CLUSTER_SCOPED_KINDS = frozenset({CLUSTER_PLUGIN_DEFINITION_KIND})


def plural_for(kind: str) -> str:
    """Plural resource name of a kind in the platform's API group."""
    return KIND_PLURALS.get(kind, f"{kind.lower()}s")


class ResourceStore:
    """CRUD access to custom resources of the platform's API group.

    Objects are exchanged as plain dicts. Writes that carry a
    ``metadata.resourceVersion`` are conditional and fail with
    ``KubernetesConflictError`` when the object changed in between.

    Args:
        client: Client of the control-plane cluster.
    """

    def __init__(self, client: KubernetesClient) -> None:
        self._client = client
        self._log = logger.bind(entity="resource_store")

    def _resolve_namespace(self, namespace: str | None) -> str:
        return namespace or self._client.default_namespace

    def _handle_api_error(
        self, e: Exception, kind: str | None, name: str | None, namespace: str | None
    ) -> NoReturn:
        """Translate an API exception and re-raise it.

        Raises:
            KubernetesError: Always.
        """
        raise self._client.translate_api_exception(
            e, resource_type=kind, resource_name=name, namespace=namespace
        )

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        """Get a single object."""
        plural = plural_for(kind)
        try:
            if kind in CLUSTER_SCOPED_KINDS:
                return self._client.custom_objects.get_cluster_custom_object(
                    API_GROUP, API_VERSION, plural, name
                )
            ns = self._resolve_namespace(namespace)
            return self._client.custom_objects.get_namespaced_custom_object(
                API_GROUP, API_VERSION, ns, plural, name
            )
        except Exception as e:
            self._handle_api_error(e, kind, name, namespace)

    def find(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Get a single object, returning None if it does not exist."""
        try:
            return self.get(kind, name, namespace)
        except KubernetesNotFoundError:
            return None

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        *,
        label_selector: str | None = None,
        field_selector: str | None = None,
        all_namespaces: bool = False,
    ) -> list[dict[str, Any]]:
        """List objects of a kind, optionally filtered by selectors.

        With ``all_namespaces`` a namespaced kind is listed across the whole
        cluster.
        """
        plural = plural_for(kind)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        self._log.debug("listing_objects", kind=kind, namespace=namespace, label_selector=label_selector)
        try:
            if kind in CLUSTER_SCOPED_KINDS or all_namespaces:
                result = self._client.custom_objects.list_cluster_custom_object(
                    API_GROUP, API_VERSION, plural, **kwargs
                )
            else:
                ns = self._resolve_namespace(namespace)
                result = self._client.custom_objects.list_namespaced_custom_object(
                    API_GROUP, API_VERSION, ns, plural, **kwargs
                )
        except Exception as e:
            self._handle_api_error(e, kind, None, namespace)
        items: list[dict[str, Any]] = result.get("items") or []
        for item in items:
            # list responses omit the kind on items
            item.setdefault("kind", kind)
            item.setdefault("apiVersion", f"{API_GROUP}/{API_VERSION}")
        return items

    def create(self, kind: str, body: dict[str, Any], namespace: str | None = None) -> dict[str, Any]:
        """Create an object."""
        name = (body.get("metadata") or {}).get("name")
        ns = self._resolve_namespace(namespace)
        self._log.info("creating_object", kind=kind, name=name, namespace=ns)
        try:
            return self._client.custom_objects.create_namespaced_custom_object(
                API_GROUP, API_VERSION, ns, plural_for(kind), body
            )
        except Exception as e:
            self._handle_api_error(e, kind, name, ns)

    def replace(self, kind: str, body: dict[str, Any], namespace: str | None = None) -> dict[str, Any]:
        """Replace an object, conditional on its ``resourceVersion``."""
        name = body["metadata"]["name"]
        ns = self._resolve_namespace(namespace or body["metadata"].get("namespace"))
        try:
            return self._client.custom_objects.replace_namespaced_custom_object(
                API_GROUP, API_VERSION, ns, plural_for(kind), name, body
            )
        except Exception as e:
            self._handle_api_error(e, kind, name, ns)

    def patch(
        self, kind: str, name: str, patch: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        """Apply a JSON merge patch to an object."""
        ns = self._resolve_namespace(namespace)
        try:
            return self._client.custom_objects.patch_namespaced_custom_object(
                API_GROUP, API_VERSION, ns, plural_for(kind), name, patch
            )
        except Exception as e:
            self._handle_api_error(e, kind, name, ns)

    def patch_status(
        self, kind: str, name: str, status: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        """Patch the status subresource of an object."""
        ns = self._resolve_namespace(namespace)
        try:
            return self._client.custom_objects.patch_namespaced_custom_object_status(
                API_GROUP, API_VERSION, ns, plural_for(kind), name, {"status": status}
            )
        except Exception as e:
            self._handle_api_error(e, kind, name, ns)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> bool:
        """Delete an object.

        Returns:
            False if the object did not exist.
        """
        ns = self._resolve_namespace(namespace)
        self._log.info("deleting_object", kind=kind, name=name, namespace=ns)
        try:
            self._client.custom_objects.delete_namespaced_custom_object(
                API_GROUP, API_VERSION, ns, plural_for(kind), name
            )
            return True
        except Exception as e:
            error = self._client.translate_api_exception(e, kind, name, ns)
            if isinstance(error, KubernetesNotFoundError):
                return False
            raise error from e

    # =========================================================================
    # Core resources
    # =========================================================================

    def get_secret_data(self, name: str, namespace: str | None = None) -> dict[str, str]:
        """Read the base64-encoded data of a Secret."""
        ns = self._resolve_namespace(namespace)
        try:
            secret = self._client.core_v1.read_namespaced_secret(name=name, namespace=ns)
        except Exception as e:
            self._handle_api_error(e, "Secret", name, ns)
        return dict(secret.data or {})


def merge_patch(previous: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    """JSON merge patch turning ``previous`` into ``current``.

    Keys missing from ``current`` are set to None so the API server drops
    them. Lists are replaced as a whole.
    """
    patch: dict[str, Any] = {}
    for key, value in current.items():
        old = previous.get(key)
        if isinstance(value, dict) and isinstance(old, dict):
            patch[key] = merge_patch(old, value)
        else:
            patch[key] = value
    for key in previous.keys() - current.keys():
        patch[key] = None
    return patch
