"""Pydantic models of the custom resources reconciled by the operator."""

from fleet_plugin_operator.models.base import (
    KubernetesResource,
    LabelSelector,
    LabelSelectorRequirement,
    ObjectMeta,
    OwnerReference,
)
from fleet_plugin_operator.models.cluster import Cluster
from fleet_plugin_operator.models.conditions import (
    Condition,
    ConditionReason,
    ConditionType,
    StatusConditions,
    false_condition,
    true_condition,
    unknown_condition,
)
from fleet_plugin_operator.models.definition import (
    ClusterPluginDefinition,
    PluginDefinition,
    PluginDefinitionSpec,
    PluginOption,
)
from fleet_plugin_operator.models.plugin import (
    ExposedService,
    HelmChartReference,
    HelmReleaseStatus,
    IgnoreDifference,
    Plugin,
    PluginDefinitionReference,
    PluginOptionValue,
    PluginSpec,
    PluginStatus,
)
from fleet_plugin_operator.models.preset import (
    ClusterOptionOverride,
    ManagedPluginStatus,
    PluginPreset,
    PluginPresetSpec,
    PluginPresetStatus,
)

__all__ = [
    "Cluster",
    "ClusterOptionOverride",
    "ClusterPluginDefinition",
    "Condition",
    "ConditionReason",
    "ConditionType",
    "ExposedService",
    "HelmChartReference",
    "HelmReleaseStatus",
    "IgnoreDifference",
    "KubernetesResource",
    "LabelSelector",
    "LabelSelectorRequirement",
    "ManagedPluginStatus",
    "ObjectMeta",
    "OwnerReference",
    "Plugin",
    "PluginDefinition",
    "PluginDefinitionReference",
    "PluginDefinitionSpec",
    "PluginOption",
    "PluginOptionValue",
    "PluginPreset",
    "PluginPresetSpec",
    "PluginPresetStatus",
    "PluginSpec",
    "PluginStatus",
    "StatusConditions",
    "false_condition",
    "true_condition",
    "unknown_condition",
]
