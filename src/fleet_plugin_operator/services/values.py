"""Option value resolution for Plugins.

Turns the declared option values of a Plugin into the flat list handed to the
chart engine. Literal and secret values pass through, expressions over the
Plugin itself and references to other resources are evaluated, definition
defaults fill the gaps and platform values are injected last.
"""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from fleet_plugin_operator.constants import (
    CLUSTER_KIND,
    GREENHOUSE_VALUE_PREFIX,
    LABEL_OWNED_BY,
    PLUGIN_KIND,
    TEAM_KIND,
)
from fleet_plugin_operator.exceptions import ExpressionError, PluginOperatorError, TrackingIDError
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError, KubernetesNotFoundError
from fleet_plugin_operator.models.cluster import Cluster
from fleet_plugin_operator.models.plugin import ExternalValueReference, PluginOptionValue
from fleet_plugin_operator.services import expressions
from fleet_plugin_operator.services.tracking import tracking_id

if TYPE_CHECKING:
    from fleet_plugin_operator.models.definition import PluginDefinitionSpec, PluginOption
    from fleet_plugin_operator.models.plugin import Plugin
    from fleet_plugin_operator.services.store import ResourceStore
    from fleet_plugin_operator.services.tracking import DependencyTracker

logger = structlog.get_logger()


@dataclass
class ResolvedValues:
    """Outcome of resolving a Plugin's option values.

    Attributes:
        values: Flat option values. Secret-sourced entries are still
            references; every other entry carries a literal value.
        tracked_objects: ``Kind/Name`` IDs of every resource read.
    """

    values: list[PluginOptionValue] = field(default_factory=list)
    tracked_objects: list[str] = field(default_factory=list)


# =============================================================================
# Pure helpers
# =============================================================================


def set_or_append(values: list[PluginOptionValue], new: PluginOptionValue) -> list[PluginOptionValue]:
    """Replace the value with the same name or append it."""
    for index, value in enumerate(values):
        if value.name == new.name:
            values[index] = new
            return values
    values.append(new)
    return values


def merge_definition_defaults(
    options: list[PluginOption], values: list[PluginOptionValue]
) -> list[PluginOptionValue]:
    """Prepend definition defaults for every option not set in ``values``."""
    names = {value.name for value in values}
    defaults = [
        PluginOptionValue(name=option.name, value=option.default)
        for option in options
        if option.default is not None and option.name not in names
    ]
    return defaults + list(values)


def raw_json(value: Any) -> str:
    """Compact JSON encoding used for checksums and value equality."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def option_checksum(values: list[PluginOptionValue]) -> str:
    """SHA-256 over ``name + rawJSON`` of all values sorted by name."""
    digest = hashlib.sha256()
    for value in sorted(values, key=lambda v: v.name):
        digest.update(value.name.encode())
        if value.value is not None:
            digest.update(raw_json(value.value).encode())
    return digest.hexdigest()


def _split_path(name: str) -> list[str]:
    r"""Split a dotted option name, honoring ``\.`` escapes."""
    parts: list[str] = []
    current: list[str] = []
    chars = iter(name)
    for char in chars:
        if char == "\\":
            current.append(next(chars, ""))
        elif char == ".":
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def to_helm_values(values: list[PluginOptionValue]) -> dict[str, Any]:
    """Convert flat dotted option names into a nested Helm values tree.

    Raises:
        PluginOperatorError: If a name collides with a scalar set earlier.
    """
    tree: dict[str, Any] = {}
    for value in values:
        if value.value is None:
            continue
        *parents, leaf = _split_path(value.name)
        node = tree
        for part in parents:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise PluginOperatorError(f"option {value.name!r} conflicts with a scalar value at {part!r}")
            node = child
        node[leaf] = value.value
    return tree


def _append_flat(target: list[Any], value: Any) -> None:
    # one level of list results is flattened into the aggregate
    if isinstance(value, list):
        target.extend(value)
    else:
        target.append(value)


# =============================================================================
# Resolver
# =============================================================================


class ValueResolver:
    """Resolves the option values of one Plugin at a time.

    Args:
        store: Resource store of the control-plane cluster.
        tracker: Maintains tracker annotations on referenced resources.
        expression_evaluation_enabled: Whether expressions over the Plugin
            itself are evaluated. Disabled expressions are skipped.
        dns_domain: Base domain injected as a platform value.
    """

    def __init__(
        self,
        store: ResourceStore,
        tracker: DependencyTracker,
        *,
        expression_evaluation_enabled: bool = False,
        dns_domain: str = "",
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._expression_evaluation_enabled = expression_evaluation_enabled
        self._dns_domain = dns_domain
        self._log = logger.bind(entity="value_resolver")

    def resolve(self, plugin: Plugin, definition: PluginDefinitionSpec) -> ResolvedValues:
        """Resolve all option values of a Plugin.

        Tracker IDs referenced in the previous cycle but not in this one are
        removed from their resources afterwards. Cleanup failures are logged
        and retried on the next cycle.

        Raises:
            ExpressionError: If an expression fails to compile or evaluate.
            TrackingIDError: If a tracker ID is malformed.
            LabelSelectorError: If a reference selector cannot be parsed.
            KubernetesError: If listing referenced resources fails.
        """
        log = self._log.bind(plugin=plugin.name, namespace=plugin.namespace)
        result = ResolvedValues()

        for option in plugin.spec.option_values:
            resolved = self._resolve_option(plugin, option, result.tracked_objects)
            if resolved is not None:
                result.values.append(resolved)

        result.values = merge_definition_defaults(definition.options, result.values)
        for platform_value in self.platform_values(plugin):
            set_or_append(result.values, platform_value)

        try:
            self._tracker.remove_untracked(
                plugin.namespace,
                plugin.tracking_id,
                plugin.status.tracked_objects,
                result.tracked_objects,
            )
        except TrackingIDError:
            raise
        except PluginOperatorError as e:
            log.warning("tracker_cleanup_deferred", error=str(e))

        log.debug("resolved_option_values", count=len(result.values), tracked=result.tracked_objects)
        return result

    def _resolve_option(
        self, plugin: Plugin, option: PluginOptionValue, tracked: list[str]
    ) -> PluginOptionValue | None:
        if option.expression:
            if not self._expression_evaluation_enabled:
                self._log.debug("skipping_expression_option", plugin=plugin.name, option=option.name)
                return None
            value = expressions.evaluate(option.expression, plugin.to_k8s_object())
            return PluginOptionValue(name=option.name, value=value) if value is not None else None

        ref = option.external_ref
        if ref is not None:
            value, objects = self.resolve_reference(plugin, ref)
            tracked.extend(obj for obj in objects if obj not in tracked)
            if value is None:
                return None
            return PluginOptionValue(name=option.name, value=value)

        return option

    def resolve_reference(self, plugin: Plugin, ref: ExternalValueReference) -> tuple[Any, list[str]]:
        """Evaluate an external reference.

        Returns:
            The resolved value (None if nothing resolved) and the tracker IDs
            of every resource read.
        """
        kind = ref.kind or PLUGIN_KIND
        tracker = plugin.tracking_id

        if ref.selector is None:
            value = self._resolve_by_name(plugin, kind, ref, tracker)
            item_id = tracking_id(kind, ref.name)
            return value, ([] if item_id == tracker else [item_id])

        selector = ref.selector.to_selector_string()
        items = self._store.list(kind, plugin.namespace, label_selector=selector)
        values: list[Any] = []
        tracked: list[str] = []
        for item in items:
            name = (item.get("metadata") or {}).get("name", "")
            item_id = tracking_id(kind, name)
            if item_id == tracker:
                self._log.info("skipping_self_reference", plugin=plugin.name, kind=kind, name=name)
                continue
            try:
                result = expressions.evaluate(ref.expression, item)
            except ExpressionError as e:
                raise ExpressionError(
                    f"failed to evaluate expression on object {plugin.namespace}/{name}: {e}",
                    expression=ref.expression,
                ) from e
            _append_flat(values, result)
            tracked.append(item_id)
            self._annotate(kind, name, plugin.namespace, tracker)
        return (values or None), tracked

    def _resolve_by_name(self, plugin: Plugin, kind: str, ref: ExternalValueReference, tracker: str) -> Any:
        try:
            obj = self._store.get(kind, ref.name, plugin.namespace)
        except KubernetesNotFoundError:
            self._log.info(
                "referenced_object_not_found", plugin=plugin.name, kind=kind, name=ref.name
            )
            return None
        value = expressions.evaluate(ref.expression, obj)
        # a Plugin reading itself is never its own tracker
        if tracking_id(kind, ref.name) != tracker:
            self._annotate(kind, ref.name, plugin.namespace, tracker)
        return value

    def _annotate(self, kind: str, name: str, namespace: str, tracker: str) -> None:
        try:
            self._tracker.annotate(kind, name, namespace, tracker)
        except KubernetesError as e:
            self._log.warning(
                "tracking_annotation_failed", kind=kind, name=name, tracker=tracker, error=str(e)
            )

    # =========================================================================
    # Platform values
    # =========================================================================

    def platform_values(self, plugin: Plugin) -> list[PluginOptionValue]:
        """Values injected into every Plugin under ``global.greenhouse``."""
        namespace = plugin.namespace
        cluster_names = sorted(
            (c.get("metadata") or {}).get("name", "") for c in self._store.list(CLUSTER_KIND, namespace)
        )
        team_names = sorted(
            (t.get("metadata") or {}).get("name", "") for t in self._store.list(TEAM_KIND, namespace)
        )

        def _value(key: str, value: Any) -> PluginOptionValue:
            return PluginOptionValue(name=f"{GREENHOUSE_VALUE_PREFIX}.{key}", value=value)

        values = [
            _value("clusterNames", cluster_names),
            _value("teamNames", team_names),
            _value("organizationName", namespace),
        ]

        if plugin.spec.cluster_name:
            values.append(_value("clusterName", plugin.spec.cluster_name))
            cluster_obj = self._store.find(CLUSTER_KIND, plugin.spec.cluster_name, namespace)
            if cluster_obj is not None:
                cluster = Cluster.from_k8s_object(cluster_obj)
                for key, label_value in sorted(cluster.metadata_labels.items()):
                    values.append(_value(f"metadata.{key}", label_value))

        values.append(_value("baseDomain", self._dns_domain))

        owned_by = plugin.metadata.labels.get(LABEL_OWNED_BY)
        if owned_by:
            values.append(_value("ownedBy", owned_by))
        return values


# =============================================================================
# Secret values
# =============================================================================


def resolve_secret_values(
    values: list[PluginOptionValue], store: ResourceStore, namespace: str
) -> list[PluginOptionValue]:
    """Replace secret references by the secret contents.

    Only the chart engine adapter calls this, right before handing values to
    the chart engine.

    Raises:
        PluginOperatorError: If a secret or key is missing.
    """
    resolved: list[PluginOptionValue] = []
    for value in values:
        secret_ref = value.secret_ref
        if secret_ref is None:
            resolved.append(value)
            continue
        try:
            data = store.get_secret_data(secret_ref.name, namespace)
        except KubernetesError as e:
            raise PluginOperatorError(f"failed to read secret {namespace}/{secret_ref.name}: {e}") from e
        if secret_ref.key not in data:
            raise PluginOperatorError(
                f"secret {namespace}/{secret_ref.name} does not contain key {secret_ref.key}"
            )
        decoded = base64.b64decode(data[secret_ref.key]).decode()
        resolved.append(PluginOptionValue(name=value.name, value=decoded))
    return resolved
