"""Unit tests for mapping secondary events to affected objects."""

from __future__ import annotations

from typing import Any

import pytest

from fleet_plugin_operator.controller.watches import (
    plugins_for_cluster,
    plugins_for_definition,
    plugins_for_release,
    preset_status_stale,
)


def _plugin(name: str, cluster: str = "", kind: str = "PluginDefinition", definition: str = "nginx",
            **spec: Any) -> dict[str, Any]:
    return {
        "kind": "Plugin",
        "metadata": {"name": name, "namespace": "org"},
        "spec": {"pluginDefinitionRef": {"name": definition, "kind": kind}, "clusterName": cluster, **spec},
    }


def _ready(obj: dict[str, Any], status: str) -> dict[str, Any]:
    obj["status"] = {"statusConditions": {"conditions": [{"type": "Ready", "status": status}]}}
    return obj


@pytest.mark.unit
class TestPluginsForRelease:
    """Tests for plugins_for_release."""

    def test_matches_name_and_namespace(self) -> None:
        """Should match control-plane Plugins by release name and namespace."""
        objs = [
            _plugin("demo", releaseNamespace="web"),
            _plugin("other", releaseNamespace="web"),
            _plugin("renamed", releaseName="demo", releaseNamespace="web"),
            _plugin("elsewhere", releaseName="demo", releaseNamespace="db"),
        ]

        assert [p.name for p in plugins_for_release(objs, "demo", "web")] == ["demo", "renamed"]

    def test_ignores_remote_plugins(self) -> None:
        """Should skip Plugins targeting remote clusters."""
        objs = [_plugin("demo", cluster="cluster-a", releaseNamespace="web")]

        assert plugins_for_release(objs, "demo", "web") == []

    def test_defaults_to_plugin_namespace(self) -> None:
        """Should fall back to the Plugin's namespace."""
        assert [p.name for p in plugins_for_release([_plugin("demo")], "demo", "org")] == ["demo"]


@pytest.mark.unit
class TestPluginsForDefinition:
    """Tests for plugins_for_definition."""

    def test_namespaced_definition(self) -> None:
        """Should match references to the namespaced definition only."""
        objs = [
            _plugin("a"),
            _plugin("b", kind="ClusterPluginDefinition"),
            _plugin("c", definition="other"),
        ]

        assert [p.name for p in plugins_for_definition(objs, "PluginDefinition", "nginx")] == ["a"]

    def test_cluster_definition_includes_fallbacks(self) -> None:
        """Should include namespaced references that may fall back."""
        objs = [_plugin("a"), _plugin("b", kind="ClusterPluginDefinition")]

        assert [p.name for p in plugins_for_definition(objs, "ClusterPluginDefinition", "nginx")] == ["a", "b"]


@pytest.mark.unit
class TestPluginsForCluster:
    """Tests for plugins_for_cluster."""

    def test_matches_cluster(self) -> None:
        """Should match Plugins by target cluster."""
        objs = [_plugin("a", cluster="cluster-a"), _plugin("b", cluster="cluster-b"), _plugin("c")]

        assert [p.name for p in plugins_for_cluster(objs, "cluster-a")] == ["a"]


@pytest.mark.unit
class TestPresetStatusStale:
    """Tests for preset_status_stale."""

    def _preset(self, preset_obj: dict[str, Any], status: str | None) -> dict[str, Any]:
        if status is not None:
            preset_obj["status"] = {
                "pluginStatuses": [
                    {"pluginName": "ingress-cluster-a", "readyCondition": {"type": "Ready", "status": status}}
                ]
            }
        return preset_obj

    def test_unchanged(self, preset_obj: dict[str, Any]) -> None:
        """Should not refresh when the snapshot matches."""
        plugin = _ready(_plugin("ingress-cluster-a", cluster="cluster-a"), "True")

        assert not preset_status_stale(self._preset(preset_obj, "True"), plugin)

    def test_changed(self, preset_obj: dict[str, Any]) -> None:
        """Should refresh when the Ready status flipped."""
        plugin = _ready(_plugin("ingress-cluster-a", cluster="cluster-a"), "False")

        assert preset_status_stale(self._preset(preset_obj, "True"), plugin)

    def test_new_plugin(self, preset_obj: dict[str, Any]) -> None:
        """Should refresh for Plugins missing from the snapshot."""
        plugin = _ready(_plugin("ingress-cluster-a", cluster="cluster-a"), "True")

        assert preset_status_stale(self._preset(preset_obj, None), plugin)

    def test_unreported_plugin(self, preset_obj: dict[str, Any]) -> None:
        """Should ignore Plugins without a Ready condition yet."""
        plugin = _plugin("ingress-cluster-a", cluster="cluster-a")

        assert not preset_status_stale(self._preset(preset_obj, None), plugin)
        assert preset_status_stale(self._preset(preset_obj, "True"), plugin)
