"""Plugin resource model.

A Plugin is one chart installation bound to at most one target cluster.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, model_validator

from fleet_plugin_operator.constants import (
    DELETION_POLICY_DELETE,
    PLUGIN_DEFINITION_KIND,
    PLUGIN_KIND,
)
from fleet_plugin_operator.models.base import CamelModel, KubernetesResource, LabelSelector
from fleet_plugin_operator.models.conditions import StatusConditions


class SecretKeyReference(CamelModel):
    """Reference to a key of a Secret in the plugin's namespace."""

    name: str
    key: str


class ExternalValueReference(CamelModel):
    """Reference to another resource whose evaluated expression becomes the value."""

    kind: str = ""
    name: str = ""
    selector: LabelSelector | None = None
    expression: str = ""

    @model_validator(mode="after")
    def _check_target(self) -> ExternalValueReference:
        if bool(self.name) == (self.selector is not None):
            raise ValueError("exactly one of name or selector must be set on a value reference")
        return self


class ValueFromSource(CamelModel):
    """Indirect value source."""

    secret: SecretKeyReference | None = None
    ref: ExternalValueReference | None = None

    @model_validator(mode="after")
    def _check_single_source(self) -> ValueFromSource:
        if (self.secret is None) == (self.ref is None):
            raise ValueError("valueFrom requires exactly one of secret or ref")
        return self


class PluginOptionValue(CamelModel):
    """A named option value.

    Exactly one of ``value``, ``value_from`` or ``expression`` is populated.
    A JSON ``null`` literal counts as unset.
    """

    name: str
    value: Any = None
    value_from: ValueFromSource | None = None
    expression: str | None = None

    @model_validator(mode="after")
    def _check_exactly_one(self) -> PluginOptionValue:
        sources = [self.value is not None, self.value_from is not None, bool(self.expression)]
        if sum(sources) != 1:
            raise ValueError(f"option {self.name!r} must set exactly one of value, valueFrom or expression")
        return self

    @property
    def is_literal(self) -> bool:
        return self.value is not None

    @property
    def secret_ref(self) -> SecretKeyReference | None:
        return self.value_from.secret if self.value_from else None

    @property
    def external_ref(self) -> ExternalValueReference | None:
        return self.value_from.ref if self.value_from else None


class PluginDefinitionReference(CamelModel):
    """Reference to a PluginDefinition or ClusterPluginDefinition."""

    name: str
    kind: str = PLUGIN_DEFINITION_KIND


class PluginReference(CamelModel):
    """A Plugin dependency, either by name or by the preset that generated it."""

    name: str = ""
    plugin_preset: str = ""

    def resolve_name(self, cluster_name: str) -> str:
        """Name of the Plugin this reference points at on the given cluster."""
        if self.plugin_preset:
            return f"{self.plugin_preset}-{cluster_name}"
        return self.name


class WaitForItem(CamelModel):
    plugin_ref: PluginReference


class IgnoreDifference(CamelModel):
    """Object paths excluded from drift detection."""

    group: str = ""
    version: str = ""
    kind: str = ""
    name: str = ""
    paths: list[str] = Field(default_factory=list)

    def matches(self, obj: dict[str, Any]) -> bool:
        """Whether this rule applies to the given manifest object."""
        api_version = obj.get("apiVersion", "")
        group, _, version = api_version.rpartition("/")
        if self.group and self.group != group:
            return False
        if self.version and self.version != version:
            return False
        if self.kind and self.kind != obj.get("kind"):
            return False
        return not (self.name and self.name != (obj.get("metadata") or {}).get("name"))


class PluginSpec(CamelModel):
    """Desired state of a Plugin."""

    plugin_definition_ref: PluginDefinitionReference
    display_name: str = ""
    option_values: list[PluginOptionValue] = Field(default_factory=list)
    cluster_name: str = ""
    release_namespace: str = ""
    release_name: str = ""
    deletion_policy: Literal["Delete", "Retain"] = DELETION_POLICY_DELETE
    wait_for: list[WaitForItem] = Field(default_factory=list)
    ignore_differences: list[IgnoreDifference] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_option_names(self) -> PluginSpec:
        seen: set[str] = set()
        for option in self.option_values:
            if option.name in seen:
                raise ValueError(f"duplicate option value {option.name!r}")
            seen.add(option.name)
        return self


class HelmReleaseStatus(CamelModel):
    """Snapshot of the release backing a Plugin."""

    status: str = "unknown"
    first_deployed: str | None = None
    last_deployed: str | None = None
    plugin_option_checksum: str = ""
    diff: str = ""


class HelmChartReference(CamelModel):
    name: str
    repository: str = ""
    version: str = ""


class UIApplicationReference(CamelModel):
    name: str
    version: str = ""
    url: str = ""


class ExposedService(CamelModel):
    """A Service or Ingress exposed by a Plugin."""

    namespace: str
    name: str
    port: int = 0
    protocol: str | None = None
    type: Literal["service", "ingress"] = "service"


class PluginStatus(CamelModel):
    """Observed state of a Plugin."""

    status_conditions: StatusConditions = Field(default_factory=StatusConditions)
    helm_release_status: HelmReleaseStatus | None = None
    version: str = ""
    helm_chart: HelmChartReference | None = None
    ui_application: UIApplicationReference | None = None
    weight: int | None = None
    description: str = ""
    exposed_services: dict[str, ExposedService] = Field(default_factory=dict)
    last_reconciled_at: str | None = None
    tracked_objects: list[str] = Field(default_factory=list)


class Plugin(KubernetesResource):
    """Plugin custom resource."""

    kind: str = PLUGIN_KIND
    spec: PluginSpec
    status: PluginStatus = Field(default_factory=PluginStatus)

    @property
    def conditions(self) -> StatusConditions:
        return self.status.status_conditions

    @property
    def release_name(self) -> str:
        """Release name, defaulting to the Plugin name."""
        return self.spec.release_name or self.name

    @property
    def release_namespace(self) -> str:
        """Release namespace, defaulting to the Plugin namespace."""
        return self.spec.release_namespace or self.namespace
