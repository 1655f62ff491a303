"""Plugin commands working on local manifests."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from fleet_plugin_operator.exceptions import PluginOperatorError
from fleet_plugin_operator.integrations.kubernetes.helm_client import HelmClient, HelmError
from fleet_plugin_operator.models.definition import PluginDefinitionSpec
from fleet_plugin_operator.models.plugin import Plugin, PluginOptionValue
from fleet_plugin_operator.services.chart_engine import chart_args, parse_manifest
from fleet_plugin_operator.services.values import merge_definition_defaults, to_helm_values

app = typer.Typer(help="Inspect Plugins without a running control plane.")
console = Console()
logger = structlog.get_logger()


def load_manifest(path: Path) -> dict[str, Any]:
    """Read a single YAML document."""
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path} does not contain a YAML mapping")
    return data


def offline_values(plugin: Plugin, definition: PluginDefinitionSpec) -> tuple[list[PluginOptionValue], list[str]]:
    """Literal option values merged with definition defaults.

    Returns:
        The values and the names of options that need the control plane to
        resolve (secrets, expressions and references).
    """
    literal = [value for value in plugin.spec.option_values if value.is_literal]
    unresolved = [value.name for value in plugin.spec.option_values if not value.is_literal]
    return merge_definition_defaults(definition.options, literal), unresolved


def _render(helm: HelmClient, plugin: Plugin, definition: PluginDefinitionSpec, values: list[PluginOptionValue]) -> str:
    chart, repo, version = chart_args(definition)
    with tempfile.NamedTemporaryFile(
        "w", prefix="fleet-values-", suffix=".yaml", delete=False, encoding="utf-8"
    ) as f:
        yaml.safe_dump(to_helm_values(values), f, default_flow_style=False)
        values_path = f.name
    try:
        result = helm.template(
            plugin.release_name,
            chart,
            namespace=plugin.release_namespace or "default",
            values_files=[values_path],
            version=version,
            repo=repo,
        )
    finally:
        os.unlink(values_path)
    if not result.success:
        raise PluginOperatorError(result.error or "helm template failed")
    return result.rendered_yaml


@app.command()
def template(
    plugin_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Plugin manifest."),
    definition_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="PluginDefinition or ClusterPluginDefinition manifest."
    ),
    helm_binary: str | None = typer.Option(
        None,
        "--helm-binary",
        envvar="FLEET_HELM_BINARY",
        help="Path to the helm binary.",
    ),
    summary: bool = typer.Option(
        False,
        "--summary",
        "-s",
        help="List the rendered objects instead of printing the manifest.",
    ),
) -> None:
    """Render a Plugin's chart locally with its literal option values."""
    try:
        plugin = Plugin.from_k8s_object(load_manifest(plugin_file))
        definition = PluginDefinitionSpec.model_validate(load_manifest(definition_file).get("spec") or {})
    except ValidationError as e:
        console.print(f"[red]Invalid manifest:[/red] {e}")
        raise typer.Exit(code=1) from e

    values, unresolved = offline_values(plugin, definition)
    if unresolved:
        console.print(f"[yellow]Skipping options resolved by the control plane:[/yellow] {', '.join(unresolved)}")

    logger.info("rendering_plugin", plugin=plugin.name, values=len(values))
    try:
        rendered = _render(HelmClient(helm_binary), plugin, definition, values)
    except (PluginOperatorError, HelmError) as e:
        console.print(f"[red]Template failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    if not summary:
        console.print(Syntax(rendered, "yaml"))
        return

    table = Table(title=f"Plugin {plugin.name}")
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Namespace", style="dim")
    for obj in parse_manifest(rendered):
        metadata = obj.get("metadata") or {}
        table.add_row(obj.get("kind", ""), metadata.get("name", ""), metadata.get("namespace") or plugin.release_namespace)
    console.print(table)
