"""Run command starting the operator."""

from __future__ import annotations

import kopf
import structlog
import typer

logger = structlog.get_logger()


def run(
    namespace: list[str] = typer.Option(
        [],
        "--namespace",
        "-n",
        help="Watch only this namespace. Repeat for several; cluster-wide if omitted.",
        envvar="FLEET_NAMESPACE",
    ),
    liveness: str | None = typer.Option(
        None,
        "--liveness",
        help="Serve a liveness endpoint, e.g. http://0.0.0.0:8080/healthz.",
    ),
) -> None:
    """Start the operator and block until it is stopped."""
    # Registers the handlers with kopf's default registry
    from fleet_plugin_operator.controller import handlers  # noqa: F401

    logger.info("starting_operator", namespaces=namespace or "all")
    kopf.run(
        standalone=True,
        clusterwide=not namespace,
        namespaces=namespace,
        liveness_endpoint=liveness,
    )
