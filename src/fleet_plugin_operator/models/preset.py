"""PluginPreset resource model."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from fleet_plugin_operator.constants import DELETION_POLICY_DELETE, PLUGIN_PRESET_KIND
from fleet_plugin_operator.models.base import CamelModel, KubernetesResource, LabelSelector
from fleet_plugin_operator.models.conditions import Condition, StatusConditions
from fleet_plugin_operator.models.plugin import PluginOptionValue, PluginSpec, WaitForItem


class ClusterOptionOverride(CamelModel):
    """Option values replacing the template's values on one cluster."""

    cluster_name: str
    overrides: list[PluginOptionValue] = Field(default_factory=list)


class PluginPresetSpec(CamelModel):
    """Desired state of a PluginPreset."""

    plugin: PluginSpec
    cluster_selector: LabelSelector = Field(default_factory=LabelSelector)
    cluster_option_overrides: list[ClusterOptionOverride] = Field(default_factory=list)
    wait_for: list[WaitForItem] = Field(default_factory=list)
    deletion_policy: Literal["Delete", "Retain"] = DELETION_POLICY_DELETE

    def overrides_for(self, cluster_name: str) -> list[PluginOptionValue]:
        """Override values declared for the given cluster."""
        for override in self.cluster_option_overrides:
            if override.cluster_name == cluster_name:
                return override.overrides
        return []


class ManagedPluginStatus(CamelModel):
    plugin_name: str
    ready_condition: Condition


class PluginPresetStatus(CamelModel):
    """Observed state of a PluginPreset."""

    status_conditions: StatusConditions = Field(default_factory=StatusConditions)
    plugin_statuses: list[ManagedPluginStatus] = Field(default_factory=list)
    total_plugins: int = 0
    ready_plugins: int = 0
    failed_plugins: int = 0


class PluginPreset(KubernetesResource):
    """PluginPreset custom resource."""

    kind: str = PLUGIN_PRESET_KIND
    spec: PluginPresetSpec
    status: PluginPresetStatus = Field(default_factory=PluginPresetStatus)

    @property
    def conditions(self) -> StatusConditions:
        return self.status.status_conditions

    def plugin_name_for(self, cluster_name: str) -> str:
        """Name of the Plugin generated for the given cluster."""
        return f"{self.name}-{cluster_name}"
