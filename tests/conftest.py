"""Shared pytest fixtures for fleet_plugin_operator tests."""

from __future__ import annotations

import os
from typing import Any
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from fleet_plugin_operator.models.definition import PluginDefinitionSpec


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables for each test."""
    for key in list(os.environ.keys()):
        if key.startswith("FLEET_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def capture_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """Fixture to capture log output."""
    import logging

    caplog.set_level(logging.DEBUG)
    return caplog


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Mock Kubernetes client with API sub-mocks."""
    mock_client = MagicMock()
    mock_client.default_namespace = "default"
    mock_client.api_client.sanitize_for_serialization.side_effect = lambda obj: obj
    return mock_client


@pytest.fixture
def mock_store() -> MagicMock:
    """Mock resource store returning nothing by default."""
    store = MagicMock()
    store.find.return_value = None
    store.list.return_value = []
    return store


@pytest.fixture
def plugin_obj() -> dict[str, Any]:
    """A Plugin as returned by the API server."""
    return {
        "apiVersion": "greenhouse.sap/v1alpha1",
        "kind": "Plugin",
        "metadata": {
            "name": "demo",
            "namespace": "org",
            "uid": "plugin-uid",
            "labels": {"greenhouse.sap/owned-by": "team-a"},
            "annotations": {},
        },
        "spec": {
            "pluginDefinitionRef": {"name": "nginx", "kind": "PluginDefinition"},
            "clusterName": "cluster-a",
            "releaseNamespace": "web",
            "optionValues": [
                {"name": "replicas", "value": 2},
                {"name": "image.tag", "value": "1.25"},
            ],
        },
    }


@pytest.fixture
def definition_spec() -> PluginDefinitionSpec:
    """A Helm-backed definition with one defaulted option."""
    return PluginDefinitionSpec.model_validate(
        {
            "displayName": "NGINX",
            "description": "Web server",
            "version": "1.2.0",
            "helmChart": {"name": "nginx", "repository": "https://charts.example.com", "version": "15.0.0"},
            "options": [
                {"name": "replicas", "type": "int", "default": 1},
                {"name": "service.type", "type": "string", "default": "ClusterIP"},
            ],
            "weight": 10,
        }
    )


@pytest.fixture
def cluster_obj() -> dict[str, Any]:
    """A Ready Cluster."""
    return {
        "apiVersion": "greenhouse.sap/v1alpha1",
        "kind": "Cluster",
        "metadata": {
            "name": "cluster-a",
            "namespace": "org",
            "labels": {"tier": "prod", "metadata.greenhouse.sap/region": "eu-de-1"},
            "annotations": {},
        },
        "status": {"statusConditions": {"conditions": [{"type": "Ready", "status": "True"}]}},
    }


@pytest.fixture
def preset_obj() -> dict[str, Any]:
    """A PluginPreset selecting production clusters."""
    return {
        "apiVersion": "greenhouse.sap/v1alpha1",
        "kind": "PluginPreset",
        "metadata": {
            "name": "ingress",
            "namespace": "org",
            "uid": "preset-uid",
            "labels": {"greenhouse.sap/owned-by": "team-a"},
        },
        "spec": {
            "plugin": {
                "pluginDefinitionRef": {"name": "nginx", "kind": "PluginDefinition"},
                "releaseNamespace": "web",
                "optionValues": [{"name": "replicas", "value": 3}],
            },
            "clusterSelector": {"matchLabels": {"tier": "prod"}},
            "clusterOptionOverrides": [
                {"clusterName": "cluster-b", "overrides": [{"name": "replicas", "value": 5}]},
            ],
        },
    }
