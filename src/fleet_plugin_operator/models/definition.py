"""PluginDefinition and ClusterPluginDefinition models."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from fleet_plugin_operator.constants import CLUSTER_PLUGIN_DEFINITION_KIND, PLUGIN_DEFINITION_KIND
from fleet_plugin_operator.models.base import CamelModel, KubernetesResource
from fleet_plugin_operator.models.plugin import HelmChartReference, UIApplicationReference


class PluginOption(CamelModel):
    """An option declared by a definition."""

    name: str
    type: str = "string"
    required: bool = False
    default: Any = None
    description: str = ""
    display_name: str = ""


class PluginDefinitionSpec(CamelModel):
    """Catalog entry describing a chart and its options."""

    display_name: str = ""
    description: str = ""
    version: str = ""
    helm_chart: HelmChartReference | None = None
    ui_application: UIApplicationReference | None = None
    options: list[PluginOption] = Field(default_factory=list)
    weight: int | None = None

    def option(self, name: str) -> PluginOption | None:
        for option in self.options:
            if option.name == name:
                return option
        return None


class PluginDefinition(KubernetesResource):
    """Namespaced definition."""

    kind: str = PLUGIN_DEFINITION_KIND
    spec: PluginDefinitionSpec = Field(default_factory=PluginDefinitionSpec)


class ClusterPluginDefinition(KubernetesResource):
    """Cluster-scoped definition."""

    kind: str = CLUSTER_PLUGIN_DEFINITION_KIND
    spec: PluginDefinitionSpec = Field(default_factory=PluginDefinitionSpec)
