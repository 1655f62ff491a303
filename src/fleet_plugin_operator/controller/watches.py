"""Mapping of secondary resource events to the objects they affect."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from fleet_plugin_operator.constants import CLUSTER_PLUGIN_DEFINITION_KIND, PLUGIN_DEFINITION_KIND
from fleet_plugin_operator.models.conditions import ConditionType
from fleet_plugin_operator.models.plugin import Plugin
from fleet_plugin_operator.models.preset import PluginPreset

HELM_RELEASE_NAME_LABEL = "name"
HELM_OWNER_LABEL = "owner"
HELM_OWNER = "helm"


def _plugins(objs: Iterable[dict[str, Any]]) -> list[Plugin]:
    return [Plugin.from_k8s_object(obj) for obj in objs]


def plugins_for_release(objs: Iterable[dict[str, Any]], release_name: str, namespace: str) -> list[Plugin]:
    """Plugins installing ``release_name`` into ``namespace`` of the control plane."""
    return [
        plugin
        for plugin in _plugins(objs)
        if not plugin.spec.cluster_name
        and plugin.release_name == release_name
        and plugin.release_namespace == namespace
    ]


def plugins_for_definition(objs: Iterable[dict[str, Any]], kind: str, name: str) -> list[Plugin]:
    """Plugins whose definition reference resolves to ``kind/name``.

    A ``PluginDefinition`` reference may fall back to the cluster-scoped
    definition of the same name, so those are included for cluster-scoped
    changes.
    """
    matched = []
    for plugin in _plugins(objs):
        ref = plugin.spec.plugin_definition_ref
        if ref.name != name:
            continue
        if ref.kind == kind or (kind == CLUSTER_PLUGIN_DEFINITION_KIND and ref.kind == PLUGIN_DEFINITION_KIND):
            matched.append(plugin)
    return matched


def plugins_for_cluster(objs: Iterable[dict[str, Any]], cluster_name: str) -> list[Plugin]:
    return [plugin for plugin in _plugins(objs) if plugin.spec.cluster_name == cluster_name]


def preset_status_stale(preset_obj: dict[str, Any], plugin_obj: dict[str, Any]) -> bool:
    """Whether the preset's snapshot of the Plugin's Ready condition is outdated."""
    preset = PluginPreset.from_k8s_object(preset_obj)
    plugin = Plugin.from_k8s_object(plugin_obj)
    ready = plugin.conditions.get(ConditionType.READY)
    for status in preset.status.plugin_statuses:
        if status.plugin_name == plugin.name:
            return ready is None or not status.ready_condition.equals(ready)
    return ready is not None
