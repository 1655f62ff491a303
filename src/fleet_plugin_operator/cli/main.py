"""Main CLI entry point using Typer."""

from __future__ import annotations

import typer
from rich.console import Console

from fleet_plugin_operator import __version__
from fleet_plugin_operator.cli.commands import plugin, run
from fleet_plugin_operator.logging.config import configure_logging

app = typer.Typer(
    name="fleet-operator",
    help="Fleet control plane for Plugins and PluginPresets.",
    add_completion=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fleet-operator version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Render logs as JSON lines.",
    ),
) -> None:
    """Reconcile Plugins and PluginPresets across a fleet of clusters."""
    configure_logging(verbose=verbose, debug=debug, json_output=json_logs)


# Register subcommands
app.command()(run.run)
app.add_typer(plugin.app, name="plugin")


if __name__ == "__main__":
    app()
