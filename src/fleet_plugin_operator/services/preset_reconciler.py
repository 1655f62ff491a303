"""Fleet expansion of PluginPresets.

A PluginPreset generates one Plugin named ``{preset}-{cluster}`` for every
matching cluster. Plugins that were edited by hand are never overwritten;
they are reported through the PluginSkipped condition instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from fleet_plugin_operator.constants import (
    CLUSTER_KIND,
    DELETION_POLICY_RETAIN,
    GLOBAL_VALUE_PREFIX,
    GROUP_VERSION,
    LABEL_CLUSTER,
    LABEL_PLUGIN_PRESET,
    PLUGIN_KIND,
    PLUGIN_PRESET_KIND,
    PRESET_DELETION_REQUEUE_INTERVAL,
)
from fleet_plugin_operator.exceptions import DefinitionNotFoundError, LabelSelectorError
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError, KubernetesValidationError
from fleet_plugin_operator.models.base import OwnerReference
from fleet_plugin_operator.models.cluster import Cluster
from fleet_plugin_operator.models.conditions import (
    ConditionReason,
    ConditionType,
    false_condition,
    true_condition,
)
from fleet_plugin_operator.models.plugin import Plugin, PluginOptionValue, PluginSpec
from fleet_plugin_operator.models.preset import ManagedPluginStatus, PluginPreset
from fleet_plugin_operator.services.definitions import get_definition_spec
from fleet_plugin_operator.services.plugin_reconciler import ReconcileResult
from fleet_plugin_operator.services.readiness import compute_preset_ready
from fleet_plugin_operator.services.store import merge_patch
from fleet_plugin_operator.services.values import raw_json, set_or_append

if TYPE_CHECKING:
    from fleet_plugin_operator.models.definition import PluginDefinitionSpec
    from fleet_plugin_operator.services.store import ResourceStore

logger = structlog.get_logger()

PRESET_EXPOSED_CONDITIONS = (
    ConditionType.READY,
    ConditionType.PLUGIN_SKIPPED,
    ConditionType.PLUGIN_FAILED,
    ConditionType.CLUSTER_LIST_EMPTY,
    ConditionType.ALL_PLUGINS_READY,
)


# =============================================================================
# Option comparison
# =============================================================================


def option_values_equal(a: PluginOptionValue, b: PluginOptionValue) -> bool:
    """Compare two option values by their source.

    Literals compare by raw JSON and secrets by name and key. Expressions
    and external references only compare by their presence.
    """
    if a.name != b.name:
        return False
    if a.is_literal or b.is_literal:
        return a.is_literal and b.is_literal and raw_json(a.value) == raw_json(b.value)
    if a.secret_ref is not None or b.secret_ref is not None:
        return (
            a.secret_ref is not None
            and b.secret_ref is not None
            and (a.secret_ref.name, a.secret_ref.key) == (b.secret_ref.name, b.secret_ref.key)
        )
    return bool(a.expression) == bool(b.expression) and (a.external_ref is None) == (b.external_ref is None)


def is_definition_default(option: PluginOptionValue, definition: PluginDefinitionSpec | None) -> bool:
    if definition is None:
        return False
    declared = definition.option(option.name)
    if declared is None or declared.default is None:
        return False
    return option_values_equal(option, PluginOptionValue(name=option.name, value=declared.default))


def has_custom_options(
    plugin: Plugin, preset: PluginPreset, cluster_name: str, definition: PluginDefinitionSpec | None
) -> bool:
    """Whether the Plugin carries options the preset cannot account for.

    Options matching the preset template or its cluster overrides, platform
    values under ``global.`` and unchanged definition defaults are accounted
    for. Anything else, including a changed value of a declared option, was
    set by hand.
    """
    expected: list[PluginOptionValue] = list(preset.spec.plugin.option_values)
    for override in preset.spec.overrides_for(cluster_name):
        set_or_append(expected, override)
    declared = {value.name: value for value in expected}
    for option in plugin.spec.option_values:
        if option.name in declared:
            if option_values_equal(option, declared[option.name]):
                continue
            return True
        if option.name.startswith(GLOBAL_VALUE_PREFIX):
            continue
        if is_definition_default(option, definition):
            continue
        return True
    return False


def should_skip(
    plugin: Plugin, preset: PluginPreset, cluster_name: str, definition: PluginDefinitionSpec | None
) -> bool:
    """Plugins not managed by the preset or edited by hand are left alone."""
    if plugin.metadata.labels.get(LABEL_PLUGIN_PRESET) != preset.name:
        return True
    return has_custom_options(plugin, preset, cluster_name, definition)


# =============================================================================
# Plugin generation
# =============================================================================


def build_plugin_spec(preset: PluginPreset, cluster_name: str, existing: Plugin | None = None) -> PluginSpec:
    """Plugin spec for one cluster: the template plus the cluster's overrides."""
    template = preset.spec.plugin
    option_values = [value.model_copy(deep=True) for value in template.option_values]
    for override in preset.spec.overrides_for(cluster_name):
        set_or_append(option_values, override.model_copy(deep=True))

    release_name = template.release_name
    if existing is not None:
        if existing.spec.release_name:
            release_name = existing.spec.release_name
        elif existing.status.helm_release_status is not None:
            # an installed release keeps the name it was installed under
            release_name = existing.name

    return PluginSpec(
        plugin_definition_ref=template.plugin_definition_ref.model_copy(),
        display_name=template.display_name,
        option_values=option_values,
        cluster_name=cluster_name,
        release_namespace=template.release_namespace,
        release_name=release_name,
        deletion_policy=template.deletion_policy,
        wait_for=[item.model_copy(deep=True) for item in (preset.spec.wait_for or template.wait_for)],
        ignore_differences=[rule.model_copy(deep=True) for rule in template.ignore_differences],
    )


def owner_reference(preset: PluginPreset) -> OwnerReference:
    return OwnerReference(
        api_version=GROUP_VERSION,
        kind=PLUGIN_PRESET_KIND,
        name=preset.name,
        uid=preset.metadata.uid or "",
        controller=True,
        block_owner_deletion=True,
    )


def plugin_labels(preset: PluginPreset, cluster_name: str, current: dict[str, str] | None = None) -> dict[str, str]:
    labels = dict(current or {})
    labels.update(preset.metadata.labels)
    labels[LABEL_PLUGIN_PRESET] = preset.name
    labels[LABEL_CLUSTER] = cluster_name
    return labels


def _owner_references(preset: PluginPreset, current: list[dict[str, Any]]) -> list[dict[str, Any]]:
    others = [ref for ref in current if not (ref.get("kind") == PLUGIN_PRESET_KIND and ref.get("name") == preset.name)]
    return [*others, owner_reference(preset).to_dict()]


def _error_message(error: KubernetesError) -> str:
    if isinstance(error, KubernetesValidationError) and error.first_cause:
        return error.first_cause
    return str(error)


# =============================================================================
# Reconciler
# =============================================================================


class PresetReconciler:
    """Expands PluginPresets into per-cluster Plugins.

    Args:
        store: Control-plane resource store.
    """

    def __init__(self, store: ResourceStore) -> None:
        self._store = store
        self._log = logger.bind(entity="preset_reconciler")

    def reconcile(self, obj: dict[str, Any]) -> ReconcileResult:
        """Reconcile the PluginPreset given in its API representation."""
        preset = PluginPreset.from_k8s_object(obj)
        previous_status = preset.status.to_dict()
        log = self._log.bind(preset=preset.name, namespace=preset.namespace)

        try:
            if preset.metadata.is_deleting:
                result = self.ensure_deleted(preset)
            else:
                result = self.ensure_created(preset)
        except KubernetesError as e:
            result = ReconcileResult(error=str(e), done=False)

        if not preset.metadata.is_deleting:
            preset.conditions.set(compute_preset_ready(preset.conditions))
        try:
            patch = merge_patch(previous_status, preset.status.to_dict())
            self._store.patch_status(PLUGIN_PRESET_KIND, preset.name, patch, preset.namespace)
        except KubernetesError as e:
            log.warning("preset_status_update_failed", error=str(e))
            if result.error is None:
                result.error = f"failed to update status: {e}"

        if result.error:
            log.warning("preset_reconcile_failed", error=result.error)
        else:
            log.info("preset_reconciled", plugins=preset.status.total_plugins, ready=preset.status.ready_plugins)
        return result

    def _managed_plugins(self, preset: PluginPreset) -> list[dict[str, Any]]:
        return self._store.list(
            PLUGIN_KIND, preset.namespace, label_selector=f"{LABEL_PLUGIN_PRESET}={preset.name}"
        )

    # -------------------------------------------------------------------------
    # Creation / update
    # -------------------------------------------------------------------------

    def ensure_created(self, preset: PluginPreset) -> ReconcileResult:
        """Converge the set of Plugins generated by ``preset``.

        Per-cluster failures do not stop the expansion; they are collected
        into the PluginFailed condition.
        """
        preset.conditions.init(*PRESET_EXPOSED_CONDITIONS)

        try:
            selector = preset.spec.cluster_selector.to_selector_string()
        except LabelSelectorError as e:
            preset.conditions.set(
                true_condition(ConditionType.CLUSTER_LIST_EMPTY, message=f"Invalid ClusterSelector: {e}")
            )
            return ReconcileResult(error=f"invalid cluster selector: {e}")

        clusters = [
            Cluster.from_k8s_object(obj)
            for obj in self._store.list(CLUSTER_KIND, preset.namespace, label_selector=selector or None)
        ]
        if clusters:
            preset.conditions.set(false_condition(ConditionType.CLUSTER_LIST_EMPTY))
        else:
            preset.conditions.set(
                true_condition(ConditionType.CLUSTER_LIST_EMPTY, message="No cluster matches ClusterSelector")
            )

        failures = self._cleanup_dangling(preset, {cluster.name for cluster in clusters})
        definition = self._definition(preset)

        skipped: list[str] = []
        for cluster in clusters:
            if cluster.metadata.is_deleting:
                continue
            name = preset.plugin_name_for(cluster.name)
            try:
                if not self._apply_plugin(preset, cluster.name, definition):
                    skipped.append(name)
            except KubernetesError as e:
                failures.append(f"{name}: {_error_message(e)}")

        if skipped:
            preset.conditions.set(
                true_condition(
                    ConditionType.PLUGIN_SKIPPED, message="Skipped existing plugins: " + ", ".join(skipped)
                )
            )
        else:
            preset.conditions.set(false_condition(ConditionType.PLUGIN_SKIPPED))

        if failures:
            preset.conditions.set(
                true_condition(
                    ConditionType.PLUGIN_FAILED,
                    reason=ConditionReason.PLUGIN_RECONCILE_FAILED,
                    message="; ".join(failures),
                )
            )
        else:
            preset.conditions.set(false_condition(ConditionType.PLUGIN_FAILED))

        self.reconcile_plugin_statuses(preset)
        if failures:
            return ReconcileResult(error="; ".join(failures))
        return ReconcileResult()

    def _definition(self, preset: PluginPreset) -> PluginDefinitionSpec | None:
        try:
            return get_definition_spec(self._store, preset.spec.plugin.plugin_definition_ref, preset.namespace)
        except DefinitionNotFoundError as e:
            # Plugins report the missing definition themselves
            self._log.warning("preset_definition_not_found", preset=preset.name, error=str(e))
            return None

    def _cleanup_dangling(self, preset: PluginPreset, cluster_names: set[str]) -> list[str]:
        """Delete managed Plugins whose cluster no longer matches."""
        failures: list[str] = []
        for obj in self._managed_plugins(preset):
            plugin = Plugin.from_k8s_object(obj)
            if plugin.spec.cluster_name in cluster_names or plugin.metadata.is_deleting:
                continue
            try:
                self._store.delete(PLUGIN_KIND, plugin.name, plugin.namespace)
            except KubernetesError as e:
                failures.append(f"{plugin.name}: {_error_message(e)}")
                continue
            self._log.info(
                "dangling_plugin_deleted",
                plugin=plugin.name,
                preset=preset.name,
                message=f"Dangling Plugin {plugin.name} deleted by PluginPreset {preset.name}",
            )
        return failures

    def _apply_plugin(self, preset: PluginPreset, cluster_name: str, definition: PluginDefinitionSpec | None) -> bool:
        """Create or update the Plugin of one cluster.

        Returns:
            False if an existing Plugin was skipped.
        """
        name = preset.plugin_name_for(cluster_name)
        existing_obj = self._store.find(PLUGIN_KIND, name, preset.namespace)

        if existing_obj is None:
            spec = build_plugin_spec(preset, cluster_name)
            body = {
                "apiVersion": GROUP_VERSION,
                "kind": PLUGIN_KIND,
                "metadata": {
                    "name": name,
                    "namespace": preset.namespace,
                    "labels": plugin_labels(preset, cluster_name),
                    "ownerReferences": [owner_reference(preset).to_dict()],
                },
                "spec": spec.to_dict(),
            }
            self._store.create(PLUGIN_KIND, body, preset.namespace)
            self._log.info("preset_plugin_created", preset=preset.name, plugin=name, cluster=cluster_name)
            return True

        existing = Plugin.from_k8s_object(existing_obj)
        if should_skip(existing, preset, cluster_name, definition):
            self._log.info("preset_plugin_skipped", preset=preset.name, plugin=name)
            return False

        metadata = existing_obj.setdefault("metadata", {})
        spec = build_plugin_spec(preset, cluster_name, existing).to_dict()
        labels = plugin_labels(preset, cluster_name, metadata.get("labels"))
        owners = _owner_references(preset, metadata.get("ownerReferences") or [])
        if existing_obj.get("spec") == spec and metadata.get("labels") == labels and metadata.get(
            "ownerReferences"
        ) == owners:
            return True

        existing_obj["spec"] = spec
        metadata["labels"] = labels
        metadata["ownerReferences"] = owners
        existing_obj.pop("status", None)
        self._store.replace(PLUGIN_KIND, existing_obj, preset.namespace)
        self._log.info("preset_plugin_updated", preset=preset.name, plugin=name, cluster=cluster_name)
        return True

    def reconcile_plugin_statuses(self, preset: PluginPreset) -> None:
        """Collect the Ready condition of every managed Plugin."""
        statuses: list[ManagedPluginStatus] = []
        for obj in self._managed_plugins(preset):
            plugin = Plugin.from_k8s_object(obj)
            ready = plugin.conditions.get(ConditionType.READY)
            if ready is None:
                continue
            statuses.append(ManagedPluginStatus(plugin_name=plugin.name, ready_condition=ready))

        total = len(statuses)
        ready_count = sum(1 for status in statuses if status.ready_condition.is_true())
        preset.status.plugin_statuses = statuses
        preset.status.total_plugins = total
        preset.status.ready_plugins = ready_count
        preset.status.failed_plugins = sum(1 for status in statuses if status.ready_condition.is_false())

        if total > 0 and ready_count == total:
            preset.conditions.set(true_condition(ConditionType.ALL_PLUGINS_READY, message="All plugins are ready"))
        else:
            preset.conditions.set(
                false_condition(
                    ConditionType.ALL_PLUGINS_READY, message=f"{ready_count} of {total} plugins are ready"
                )
            )

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    def ensure_deleted(self, preset: PluginPreset) -> ReconcileResult:
        """Release or delete the managed Plugins of a deleted preset."""
        plugins = self._managed_plugins(preset)

        if preset.spec.deletion_policy == DELETION_POLICY_RETAIN:
            for obj in plugins:
                self._release_plugin(preset, obj)
            preset.conditions.set(true_condition(ConditionType.DELETE, reason=ConditionReason.DELETED))
            return ReconcileResult()

        if not plugins:
            preset.conditions.set(true_condition(ConditionType.DELETE, reason=ConditionReason.DELETED))
            return ReconcileResult()

        failures: list[str] = []
        for obj in plugins:
            name = (obj.get("metadata") or {}).get("name", "")
            try:
                self._store.delete(PLUGIN_KIND, name, preset.namespace)
            except KubernetesError as e:
                failures.append(f"{name}: {_error_message(e)}")

        if failures:
            message = "; ".join(failures)
            preset.conditions.set(
                false_condition(ConditionType.DELETE, reason=ConditionReason.FAILING_DELETION, message=message)
            )
            return ReconcileResult(error=f"failed to delete plugins: {message}", done=False)

        preset.conditions.set(
            false_condition(
                ConditionType.DELETE,
                reason=ConditionReason.PENDING_DELETION,
                message=f"waiting for {len(plugins)} plugins to be deleted",
            )
        )
        return ReconcileResult(requeue_after=PRESET_DELETION_REQUEUE_INTERVAL, done=False)

    def _release_plugin(self, preset: PluginPreset, obj: dict[str, Any]) -> None:
        """Drop the preset's owner reference so the Plugin survives."""
        metadata = obj.get("metadata") or {}
        current = metadata.get("ownerReferences") or []
        remaining = [ref for ref in current if ref.get("uid") != preset.metadata.uid]
        if len(remaining) == len(current):
            return
        self._store.patch(
            PLUGIN_KIND, metadata.get("name", ""), {"metadata": {"ownerReferences": remaining}}, preset.namespace
        )
        self._log.info("preset_plugin_retained", preset=preset.name, plugin=metadata.get("name"))
