"""Release pipeline of a Plugin.

Templates, diffs and installs or upgrades the Plugin's release through a
``ChartEngine`` and records the outcome as conditions and release status on
the Plugin. Nothing is written to the API server here; callers patch the
status afterwards.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from fleet_plugin_operator.constants import (
    ANNOTATION_EXPOSE,
    ANNOTATION_EXPOSED_HOST,
    ANNOTATION_EXPOSED_NAMED_PORT,
    LABEL_PLUGIN_EXPOSED_SERVICES,
    LABEL_UI_PLUGIN,
)
from fleet_plugin_operator.exceptions import PluginOperatorError
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError
from fleet_plugin_operator.models.conditions import ConditionType, false_condition, true_condition
from fleet_plugin_operator.models.plugin import ExposedService, HelmReleaseStatus
from fleet_plugin_operator.services.chart_engine import parse_manifest
from fleet_plugin_operator.services.values import option_checksum, resolve_secret_values

if TYPE_CHECKING:
    from fleet_plugin_operator.integrations.kubernetes.models.helm import HelmRelease
    from fleet_plugin_operator.models.definition import PluginDefinitionSpec
    from fleet_plugin_operator.models.plugin import Plugin, PluginOptionValue
    from fleet_plugin_operator.services.chart_engine import ChartEngine
    from fleet_plugin_operator.services.store import ResourceStore

logger = structlog.get_logger()

RELEASE_STATUS_UNKNOWN = "unknown"

_PIPELINE_ERRORS = (PluginOperatorError, KubernetesError)


# =============================================================================
# Exposed services
# =============================================================================


def _exposed(objects: list[dict[str, Any]], kind: str) -> list[dict[str, Any]]:
    result = []
    for obj in objects:
        annotations = (obj.get("metadata") or {}).get("annotations") or {}
        if obj.get("kind") == kind and annotations.get(ANNOTATION_EXPOSE) == "true":
            result.append(obj)
    return result


def service_port(service: dict[str, Any]) -> dict[str, Any]:
    """Port of an exposed Service: the annotated named port, else the first."""
    ports = (service.get("spec") or {}).get("ports") or []
    if not ports:
        raise PluginOperatorError("service has no ports")
    annotations = (service.get("metadata") or {}).get("annotations") or {}
    named_port = annotations.get(ANNOTATION_EXPOSED_NAMED_PORT)
    if named_port:
        for port in ports:
            if port.get("name") == named_port:
                return port
    return ports[0]


def ingress_url(ingress: dict[str, Any]) -> str:
    """External URL of an exposed Ingress."""
    metadata = ingress.get("metadata") or {}
    spec = ingress.get("spec") or {}
    rules = spec.get("rules") or []
    if not rules:
        raise PluginOperatorError("ingress has no rules")

    specific_host = (metadata.get("annotations") or {}).get(ANNOTATION_EXPOSED_HOST)
    if specific_host:
        if not any(rule.get("host") == specific_host for rule in rules):
            raise PluginOperatorError(f'specified host "{specific_host}" not found in ingress rules')
        host = specific_host
    else:
        host = rules[0].get("host")
        if not host:
            raise PluginOperatorError("first ingress rule has no host")

    protocol = "http"
    for tls in spec.get("tls") or []:
        hosts = tls.get("hosts") or []
        if not hosts or host in hosts:
            protocol = "https"
            break
    return f"{protocol}://{host}"


def service_url(service_name: str, plugin: Plugin, dns_domain: str) -> str:
    """Service-proxy URL under which an exposed Service is reachable."""
    return f"https://{service_name}--{plugin.spec.cluster_name}--{plugin.namespace}.{dns_domain}"


def exposed_services(release: HelmRelease, plugin: Plugin, dns_domain: str) -> dict[str, ExposedService]:
    """Collect the Services and Ingresses a release exposes, keyed by URL.

    The deployed release manifest is inspected, not a fresh template.

    Raises:
        PluginOperatorError: Combining the service and ingress failures.
    """
    objects = parse_manifest(release.manifest)
    result: dict[str, ExposedService] = {}
    errors: list[str] = []

    try:
        services = _exposed([o for o in objects if o.get("apiVersion") == "v1"], "Service")
        if services and not plugin.spec.cluster_name:
            raise PluginOperatorError("plugin does not have ClusterName")
        for svc in services:
            metadata = svc.get("metadata") or {}
            port = service_port(svc)
            url = service_url(metadata.get("name", ""), plugin, dns_domain)
            result[url] = ExposedService(
                namespace=metadata.get("namespace") or release.namespace,
                name=metadata.get("name", ""),
                port=int(port.get("port") or 0),
                protocol=port.get("appProtocol"),
                type="service",
            )
    except PluginOperatorError as e:
        errors.append(f"services: {e}")

    try:
        for ingress in _exposed(objects, "Ingress"):
            metadata = ingress.get("metadata") or {}
            result[ingress_url(ingress)] = ExposedService(
                namespace=metadata.get("namespace") or release.namespace,
                name=metadata.get("name", ""),
                type="ingress",
            )
    except PluginOperatorError as e:
        errors.append(f"ingresses: {e}")

    if errors:
        raise PluginOperatorError("failed to get exposed resources: " + "; ".join(errors))
    return result


def technical_labels(plugin: Plugin) -> dict[str, str | None]:
    """Label patch for the UI and exposed-services markers.

    A None value removes the label in a merge patch.
    """
    labels = plugin.metadata.labels
    patch: dict[str, str | None] = {}
    desired = {
        LABEL_UI_PLUGIN: plugin.status.ui_application is not None,
        LABEL_PLUGIN_EXPOSED_SERVICES: bool(plugin.status.exposed_services),
    }
    for label, enabled in desired.items():
        if enabled and labels.get(label) != "true":
            patch[label] = "true"
        elif not enabled and label in labels:
            patch[label] = None
    return patch


# =============================================================================
# Pipeline
# =============================================================================


class ReleasePipeline:
    """Converges the release of one Plugin on its target cluster.

    Args:
        engine: Chart engine bound to the Plugin's target cluster.
        store: Control-plane resource store, used to read secret values.
        dns_domain: Base domain of service-proxy URLs.
    """

    def __init__(self, engine: ChartEngine, store: ResourceStore, dns_domain: str = "") -> None:
        self._engine = engine
        self._store = store
        self._dns_domain = dns_domain
        self._log = logger.bind(entity="release_pipeline")

    def checksum(self, plugin: Plugin, values: list[PluginOptionValue]) -> str:
        """Option checksum over the values with secrets resolved.

        An empty checksum is returned if a secret cannot be read.
        """
        try:
            return option_checksum(resolve_secret_values(values, self._store, plugin.namespace))
        except _PIPELINE_ERRORS as e:
            self._log.warning("option_checksum_failed", plugin=plugin.name, error=str(e))
            return ""

    def reconcile_release(
        self, plugin: Plugin, definition: PluginDefinitionSpec, values: list[PluginOptionValue]
    ) -> None:
        """Template, diff and install or upgrade the release."""
        log = self._log.bind(plugin=plugin.name, namespace=plugin.namespace)
        conditions = plugin.conditions

        if definition.helm_chart is None:
            conditions.set(
                false_condition(
                    ConditionType.HELM_RECONCILE_FAILED, message="PluginDefinition is not backed by HelmChart"
                )
            )
            return

        try:
            self._engine.template(definition, plugin, values)
        except _PIPELINE_ERRORS as e:
            log.warning("helm_template_failed", error=str(e))
            conditions.set(
                true_condition(ConditionType.HELM_RECONCILE_FAILED, message=f"Helm template failed: {e}")
            )
            return

        try:
            result = self._engine.diff(definition, plugin, values, self.checksum(plugin, values))
        except _PIPELINE_ERRORS as e:
            log.warning("helm_diff_failed", error=str(e))
            conditions.set(true_condition(ConditionType.HELM_RECONCILE_FAILED, message=f"Helm diff failed: {e}"))
            return

        if result.is_drift:
            conditions.set(true_condition(ConditionType.HELM_DRIFT_DETECTED))
        elif result.objects:
            conditions.set(false_condition(ConditionType.HELM_DRIFT_DETECTED))
        else:
            conditions.set(
                false_condition(ConditionType.HELM_DRIFT_DETECTED),
                false_condition(ConditionType.HELM_RECONCILE_FAILED, message="Release for plugin is up-to-date"),
            )
            log.debug("release_up_to_date")
            return

        if plugin.status.helm_release_status is None:
            plugin.status.helm_release_status = HelmReleaseStatus()
        plugin.status.helm_release_status.diff = str(result)

        try:
            self._engine.install_or_upgrade(definition, plugin, values)
        except _PIPELINE_ERRORS as e:
            log.error("helm_install_upgrade_failed", error=str(e))
            conditions.set(
                true_condition(ConditionType.HELM_RECONCILE_FAILED, message=f"Helm install/upgrade failed: {e}")
            )
            return

        log.info("helm_install_upgrade_success", drift=result.is_drift)
        conditions.set(
            false_condition(ConditionType.HELM_RECONCILE_FAILED, message="Helm install/upgrade successful")
        )

    def reconcile_status(
        self, plugin: Plugin, definition: PluginDefinitionSpec, values: list[PluginOptionValue]
    ) -> HelmRelease | None:
        """Refresh the release snapshot and definition-derived status fields.

        Release-derived fields start empty and are only filled from the
        fetched release.

        Returns:
            The current release, or None if it could not be read.
        """
        status = plugin.status
        previous = status.helm_release_status or HelmReleaseStatus()
        release_status = HelmReleaseStatus(status=RELEASE_STATUS_UNKNOWN, diff=previous.diff)
        services: dict[str, ExposedService] = {}
        version = ""
        release: HelmRelease | None = None

        try:
            release = self._engine.get_release(plugin)
        except _PIPELINE_ERRORS as e:
            plugin.conditions.set(
                false_condition(ConditionType.STATUS_UP_TO_DATE, message=f"failed to get Helm release: {e}")
            )
        else:
            try:
                services = exposed_services(release, plugin, self._dns_domain)
            except PluginOperatorError as e:
                plugin.conditions.set(
                    false_condition(ConditionType.STATUS_UP_TO_DATE, message=f"failed to get exposed services: {e}")
                )
            else:
                plugin.conditions.set(true_condition(ConditionType.STATUS_UP_TO_DATE))

            release_status.status = release.status
            release_status.first_deployed = release.first_deployed
            release_status.last_deployed = release.last_deployed
            if release.is_deployed:
                version = release.description
            if plugin.spec.option_values:
                release_status.plugin_option_checksum = self.checksum(plugin, values)

        if version == definition.version or release_status.status == RELEASE_STATUS_UNKNOWN:
            status.helm_chart = definition.helm_chart
        status.helm_release_status = release_status
        status.exposed_services = services
        status.version = version
        status.ui_application = definition.ui_application
        status.weight = definition.weight
        status.description = definition.description
        return release

    def uninstall(self, plugin: Plugin) -> bool:
        """Uninstall the release.

        Returns:
            True once the release is gone.

        Raises:
            PluginOperatorError: If the chart engine fails.
        """
        try:
            done = self._engine.uninstall(plugin)
        except KubernetesError as e:
            raise PluginOperatorError(str(e)) from e
        self._log.info("helm_uninstall", plugin=plugin.name, done=done)
        return done
