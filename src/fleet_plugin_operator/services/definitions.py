"""Lookup of the definition a Plugin refers to."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleet_plugin_operator.constants import CLUSTER_PLUGIN_DEFINITION_KIND, PLUGIN_DEFINITION_KIND
from fleet_plugin_operator.exceptions import DefinitionNotFoundError
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesNotFoundError
from fleet_plugin_operator.models.definition import ClusterPluginDefinition, PluginDefinition

if TYPE_CHECKING:
    from fleet_plugin_operator.models.definition import PluginDefinitionSpec
    from fleet_plugin_operator.models.plugin import PluginDefinitionReference
    from fleet_plugin_operator.services.store import ResourceStore


def get_definition_spec(
    store: ResourceStore, ref: PluginDefinitionReference, namespace: str
) -> PluginDefinitionSpec:
    """Resolve a definition reference.

    A ``PluginDefinition`` reference falls back to the cluster-scoped
    definition of the same name when the namespace has none.

    Raises:
        DefinitionNotFoundError: If no matching definition exists.
    """
    if ref.kind == PLUGIN_DEFINITION_KIND:
        obj = store.find(PLUGIN_DEFINITION_KIND, ref.name, namespace)
        if obj is not None:
            return PluginDefinition.from_k8s_object(obj).spec
    elif ref.kind != CLUSTER_PLUGIN_DEFINITION_KIND:
        raise DefinitionNotFoundError(ref.kind, ref.name)

    try:
        obj = store.get(CLUSTER_PLUGIN_DEFINITION_KIND, ref.name)
    except KubernetesNotFoundError as e:
        raise DefinitionNotFoundError(ref.kind, ref.name) from e
    return ClusterPluginDefinition.from_k8s_object(obj).spec
