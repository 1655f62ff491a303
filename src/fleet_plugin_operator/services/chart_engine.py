"""Chart engine interface and its Helm CLI implementation.

The release pipeline only talks to the narrow ``ChartEngine`` protocol. The
Helm implementation renders, installs and inspects releases through the helm
binary, and diffs rendered manifests against release records and live
objects.
"""

from __future__ import annotations

import difflib
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import structlog
import yaml

from fleet_plugin_operator.constants import DRIFT_DETECTION_INTERVAL
from fleet_plugin_operator.exceptions import (
    PluginOperatorError,
    ReleaseNotFoundError,
    ReleaseNotUpgradeableError,
)
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError, KubernetesNotFoundError
from fleet_plugin_operator.integrations.kubernetes.helm_client import HelmCommandError
from fleet_plugin_operator.integrations.kubernetes.models.helm import PENDING_STATUSES, STATUS_FAILED
from fleet_plugin_operator.models.base import parse_timestamp
from fleet_plugin_operator.models.conditions import ConditionType
from fleet_plugin_operator.services.values import resolve_secret_values, to_helm_values

if TYPE_CHECKING:
    from fleet_plugin_operator.core.config.models import HelmConfig
    from fleet_plugin_operator.integrations.kubernetes.models.helm import (
        HelmRelease,
        HelmReleaseHistory,
        HelmTestResult,
    )
    from fleet_plugin_operator.models.definition import PluginDefinitionSpec
    from fleet_plugin_operator.models.plugin import HelmChartReference, IgnoreDifference, Plugin, PluginOptionValue
    from fleet_plugin_operator.services.cluster_access import ClusterAccess
    from fleet_plugin_operator.services.store import ResourceStore

logger = structlog.get_logger()

DIFF_CONTEXT_LINES = 3

# Fields set by the API server that never take part in a comparison
SERVER_MANAGED_METADATA_FIELDS = (
    "creationTimestamp",
    "generation",
    "managedFields",
    "resourceVersion",
    "selfLink",
    "uid",
)


class ChartEngineError(PluginOperatorError):
    """Raised when a chart engine operation fails."""


# =============================================================================
# Diff results
# =============================================================================


@dataclass
class DiffObject:
    """Difference of a single object."""

    name: str
    diff: str


@dataclass
class DiffResult:
    """Outcome of diffing a Plugin's desired state.

    ``is_drift`` is True when the deployed objects differ from the release
    record (or the release must be installed), False when the release record
    differs from the freshly rendered manifest.
    """

    objects: list[DiffObject] = field(default_factory=list)
    is_drift: bool = False

    @property
    def has_changes(self) -> bool:
        return self.is_drift or bool(self.objects)

    def __str__(self) -> str:
        return "\n".join(f"{obj.name}\n{obj.diff}" if obj.diff else obj.name for obj in self.objects)


class ChartEngine(Protocol):
    """Operations the release pipeline needs from a chart engine."""

    def template(self, definition: PluginDefinitionSpec, plugin: Plugin, values: list[PluginOptionValue]) -> str:
        ...

    def diff(
        self,
        definition: PluginDefinitionSpec,
        plugin: Plugin,
        values: list[PluginOptionValue],
        checksum: str,
    ) -> DiffResult:
        ...

    def install_or_upgrade(
        self, definition: PluginDefinitionSpec, plugin: Plugin, values: list[PluginOptionValue]
    ) -> None:
        ...

    def uninstall(self, plugin: Plugin) -> bool:
        ...

    def get_release(self, plugin: Plugin) -> HelmRelease:
        ...

    def chart_test(self, plugin: Plugin) -> HelmTestResult:
        ...


# =============================================================================
# Manifest helpers
# =============================================================================


def parse_manifest(manifest: str) -> list[dict[str, Any]]:
    """Split a multi-document manifest into objects, dropping empty documents."""
    return [doc for doc in yaml.safe_load_all(manifest or "") if isinstance(doc, dict) and doc.get("kind")]


def object_key(obj: dict[str, Any], default_namespace: str = "") -> str:
    """``apiVersion/Kind/namespace/name`` key of a manifest object."""
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace") or default_namespace
    return f"{obj.get('apiVersion', '')}/{obj.get('kind', '')}/{namespace}/{metadata.get('name', '')}"


def chart_args(definition: PluginDefinitionSpec) -> tuple[str, str | None, str | None]:
    """Chart, repository and version arguments of the helm CLI.

    OCI repositories are addressed by a full chart reference without a
    separate repository.
    """
    chart = definition.helm_chart
    if chart is None:
        raise ChartEngineError("PluginDefinition is not backed by HelmChart")
    repository = chart.repository or None
    if repository and repository.startswith("oci://"):
        return f"{repository.rstrip('/')}/{chart.name}", None, chart.version or None
    return chart.name, repository, chart.version or None


def chart_reference(chart: HelmChartReference) -> str:
    """String form used to detect chart changes."""
    return f"{chart.repository}/{chart.name}:{chart.version}"


def _serialize(obj: dict[str, Any]) -> str:
    return yaml.safe_dump(obj, default_flow_style=False, sort_keys=True)


def _unified_diff(before: dict[str, Any], after: dict[str, Any], name: str) -> str:
    before_yaml = _serialize(before)
    after_yaml = _serialize(after)
    if before_yaml == after_yaml:
        return ""
    return "\n".join(
        difflib.unified_diff(
            before_yaml.splitlines(),
            after_yaml.splitlines(),
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
            lineterm="",
            n=DIFF_CONTEXT_LINES,
        )
    )


def strip_server_fields(obj: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``obj`` without status and server-managed metadata."""
    cleaned = {k: v for k, v in obj.items() if k != "status"}
    metadata = dict(cleaned.get("metadata") or {})
    for key in SERVER_MANAGED_METADATA_FIELDS:
        metadata.pop(key, None)
    cleaned["metadata"] = metadata
    return cleaned


def project(live: Any, desired: Any) -> Any:
    """Restrict ``live`` to the fields present in ``desired``.

    Fields defaulted by the API server are thereby ignored when comparing a
    rendered object against its live counterpart.
    """
    if isinstance(desired, dict) and isinstance(live, dict):
        return {key: project(live[key], value) for key, value in desired.items() if key in live}
    if isinstance(desired, list) and isinstance(live, list) and len(desired) == len(live):
        return [project(lv, dv) for lv, dv in zip(live, desired, strict=True)]
    return live


def _pointer_segments(path: str) -> list[str]:
    return [segment.replace("~1", "/").replace("~0", "~") for segment in path.strip("/").split("/") if segment]


def remove_path(obj: Any, path: str) -> None:
    """Remove the value at a JSON pointer path, if present."""
    segments = _pointer_segments(path)
    if not segments:
        return
    node = obj
    for segment in segments[:-1]:
        if isinstance(node, dict):
            node = node.get(segment)
        elif isinstance(node, list) and segment.isdigit() and int(segment) < len(node):
            node = node[int(segment)]
        else:
            return
    last = segments[-1]
    if isinstance(node, dict):
        node.pop(last, None)
    elif isinstance(node, list) and last.isdigit() and int(last) < len(node):
        node.pop(int(last))


def apply_ignore_differences(obj: dict[str, Any], rules: list[IgnoreDifference]) -> dict[str, Any]:
    """Copy of ``obj`` with every path ignored by a matching rule removed."""
    result = yaml.safe_load(_serialize(obj))
    for rule in rules:
        if rule.matches(obj):
            for path in rule.paths:
                remove_path(result, path)
    return result


def diff_manifests(desired: str, recorded: str, namespace: str) -> list[DiffObject]:
    """Object-by-object diff of a rendered manifest against a release record."""
    desired_objs = {object_key(o, namespace): o for o in parse_manifest(desired)}
    recorded_objs = {object_key(o, namespace): o for o in parse_manifest(recorded)}
    diffs: list[DiffObject] = []
    for key in sorted(desired_objs.keys() | recorded_objs.keys()):
        before = recorded_objs.get(key, {})
        after = desired_objs.get(key, {})
        text = _unified_diff(before, after, key)
        if text:
            diffs.append(DiffObject(name=key, diff=text))
    return diffs


def is_upgradeable(status: str, revision: int) -> bool:
    """Whether a release revision may be upgraded.

    The first revision may be upgraded even if it failed.
    """
    if status in PENDING_STATUSES or not status:
        return False
    return revision == 1 or status != STATUS_FAILED


def latest_upgradeable_revision(history: list[HelmReleaseHistory]) -> int | None:
    candidates = [entry.revision for entry in history if is_upgradeable(entry.status, entry.revision)]
    return max(candidates) if candidates else None


def _older_than(timestamp: str | None, interval: Any) -> bool:
    parsed = parse_timestamp(timestamp)
    return parsed is None or datetime.now(UTC) - parsed >= interval


# =============================================================================
# Helm implementation
# =============================================================================


class HelmChartEngine:
    """Chart engine backed by the helm CLI for one target cluster."""

    def __init__(self, access: ClusterAccess, store: ResourceStore, config: HelmConfig) -> None:
        self._access = access
        self._helm = access.helm
        self._store = store
        self._config = config
        self._log = logger.bind(entity="chart_engine", cluster=access.cluster_name or "control-plane")

    @property
    def _timeout(self) -> str:
        return f"{self._config.timeout}s"

    @contextmanager
    def _values_file(self, plugin: Plugin, values: list[PluginOptionValue]) -> Iterator[str]:
        """Write the Helm values of a Plugin to a private temporary file."""
        helm_values = to_helm_values(resolve_secret_values(values, self._store, plugin.namespace))
        with tempfile.NamedTemporaryFile(
            "w", prefix="fleet-values-", suffix=".yaml", delete=False, encoding="utf-8"
        ) as f:
            yaml.safe_dump(helm_values, f, default_flow_style=False)
            path = f.name
        try:
            yield path
        finally:
            os.unlink(path)

    # -----------------------------------------------------------------------
    # Rendering
    # -----------------------------------------------------------------------

    def template(self, definition: PluginDefinitionSpec, plugin: Plugin, values: list[PluginOptionValue]) -> str:
        """Render the chart with the given values.

        Raises:
            ChartEngineError: If rendering fails.
        """
        chart, repo, version = chart_args(definition)
        with self._values_file(plugin, values) as values_path:
            result = self._helm.template(
                plugin.release_name,
                chart,
                namespace=plugin.release_namespace,
                values_files=[values_path],
                version=version,
                repo=repo,
            )
        if not result.success:
            raise ChartEngineError(result.error or "helm template failed")
        return result.rendered_yaml

    # -----------------------------------------------------------------------
    # Diff
    # -----------------------------------------------------------------------

    def diff(
        self,
        definition: PluginDefinitionSpec,
        plugin: Plugin,
        values: list[PluginOptionValue],
        checksum: str,
    ) -> DiffResult:
        """Diff the desired state against the release and the live objects.

        Raises:
            ChartEngineError: If rendering or reading the release fails.
        """
        log = self._log.bind(plugin=plugin.name)
        status = plugin.status
        recorded_chart = (
            chart_reference(status.helm_chart)
            if status.helm_release_status is not None and status.helm_chart is not None
            else ""
        )
        if definition.helm_chart is None or chart_reference(definition.helm_chart) != recorded_chart:
            log.info("helm_chart_changed", recorded=recorded_chart)
            return DiffResult(is_drift=True)

        release = self.find_release(plugin)
        if release is None:
            return DiffResult(is_drift=True)
        if release.description != definition.version:
            log.info("release_version_changed", release_version=release.description, version=definition.version)
            return DiffResult(is_drift=True)

        manifest = self.template(definition, plugin, values)
        objects = diff_manifests(manifest, release.manifest, plugin.release_namespace)
        if objects:
            log.info("release_diff_detected", objects=[o.name for o in objects])
            return DiffResult(objects=objects, is_drift=False)

        if not self._drift_check_due(plugin, checksum):
            return DiffResult()

        objects = self.diff_live_objects(manifest, plugin)
        if objects:
            log.info("release_drift_detected", objects=[o.name for o in objects])
            return DiffResult(objects=objects, is_drift=True)
        return DiffResult()

    @staticmethod
    def _drift_check_due(plugin: Plugin, checksum: str) -> bool:
        """Whether live drift detection should run in this cycle."""
        condition = plugin.conditions.get(ConditionType.HELM_DRIFT_DETECTED)
        release_status = plugin.status.helm_release_status
        if condition is None or release_status is None:
            return False
        if not _older_than(release_status.last_deployed, DRIFT_DETECTION_INTERVAL):
            return False
        if not condition.is_unknown() and not _older_than(condition.last_transition_time, DRIFT_DETECTION_INTERVAL):
            return False
        recorded = release_status.plugin_option_checksum
        return not (recorded and recorded == checksum)

    def diff_live_objects(self, manifest: str, plugin: Plugin) -> list[DiffObject]:
        """Compare rendered objects against the objects on the cluster."""
        from kubernetes.dynamic import DynamicClient

        dynamic = DynamicClient(self._access.client.api_client)
        namespace = plugin.release_namespace
        diffs: list[DiffObject] = []
        for desired in parse_manifest(manifest):
            key = object_key(desired, namespace)
            metadata = desired.get("metadata") or {}
            try:
                api = dynamic.resources.get(api_version=desired.get("apiVersion"), kind=desired.get("kind"))
                live = api.get(name=metadata.get("name"), namespace=metadata.get("namespace") or namespace)
            except Exception as e:
                error = self._access.client.translate_api_exception(e, desired.get("kind"), metadata.get("name"))
                if isinstance(error, KubernetesNotFoundError):
                    diffs.append(DiffObject(name=key, diff="object is missing on the cluster"))
                    continue
                raise ChartEngineError(f"failed to read {key}: {error}") from e

            live_dict = live.to_dict() if hasattr(live, "to_dict") else dict(live)
            wanted = apply_ignore_differences(strip_server_fields(desired), plugin.spec.ignore_differences)
            actual = apply_ignore_differences(
                project(strip_server_fields(live_dict), wanted), plugin.spec.ignore_differences
            )
            text = _unified_diff(actual, wanted, key)
            if text:
                diffs.append(DiffObject(name=key, diff=text))
        return diffs

    # -----------------------------------------------------------------------
    # Release management
    # -----------------------------------------------------------------------

    def install_or_upgrade(
        self, definition: PluginDefinitionSpec, plugin: Plugin, values: list[PluginOptionValue]
    ) -> None:
        """Install the release or upgrade it in place.

        A failed release is first rolled back to its latest upgradeable
        revision. Pending releases are never upgraded.

        Raises:
            ReleaseNotUpgradeableError: If the release is pending.
            ChartEngineError: If helm fails.
        """
        chart, repo, version = chart_args(definition)
        name, namespace = plugin.release_name, plugin.release_namespace
        log = self._log.bind(plugin=plugin.name, release=name, namespace=namespace)

        release = self.find_release(plugin)
        try:
            with self._values_file(plugin, values) as values_path:
                if release is None:
                    log.info("installing_release")
                    self._helm.install(
                        name,
                        chart,
                        namespace=namespace,
                        values_files=[values_path],
                        version=version,
                        repo=repo,
                        description=definition.version,
                        timeout=self._timeout,
                    )
                    return

                if release.status == STATUS_FAILED:
                    log.info("resetting_failed_release", status=release.status)
                    self._rollback_to_upgradeable(plugin)
                    release = self.get_release(plugin)

                if not is_upgradeable(release.status, release.revision):
                    raise ReleaseNotUpgradeableError(name, namespace, release.status)

                log.info("upgrading_release", revision=release.revision)
                self._helm.upgrade(
                    name,
                    chart,
                    namespace=namespace,
                    values_files=[values_path],
                    version=version,
                    repo=repo,
                    description=definition.version,
                    max_history=self._config.max_history,
                    reset_values=True,
                    timeout=self._timeout,
                )
        except HelmCommandError as e:
            raise ChartEngineError(e.message) from e

    def _rollback_to_upgradeable(self, plugin: Plugin) -> None:
        name, namespace = plugin.release_name, plugin.release_namespace
        history = self._helm.history(name, namespace=namespace)
        revision = latest_upgradeable_revision(history)
        if revision is None:
            raise ChartEngineError(f"no release found to rollback to for plugin {namespace}/{plugin.name}")
        self._helm.rollback(name, revision, namespace=namespace, wait=True, no_hooks=True, timeout=self._timeout)

    def uninstall(self, plugin: Plugin) -> bool:
        """Uninstall the release.

        Returns:
            True once the release no longer exists.
        """
        if self.find_release(plugin) is None:
            return True
        try:
            self._helm.uninstall(plugin.release_name, namespace=plugin.release_namespace, timeout=self._timeout)
        except HelmCommandError as e:
            if e.is_release_not_found:
                return True
            raise ChartEngineError(e.message) from e
        return False

    def get_release(self, plugin: Plugin) -> HelmRelease:
        """Latest revision of the Plugin's release.

        Raises:
            ReleaseNotFoundError: If no release exists.
            ChartEngineError: If helm fails.
        """
        try:
            return self._helm.status(plugin.release_name, namespace=plugin.release_namespace)
        except HelmCommandError as e:
            if e.is_release_not_found:
                raise ReleaseNotFoundError(plugin.release_name, plugin.release_namespace) from e
            raise ChartEngineError(e.message) from e

    def find_release(self, plugin: Plugin) -> HelmRelease | None:
        try:
            return self.get_release(plugin)
        except ReleaseNotFoundError:
            return None

    def chart_test(self, plugin: Plugin) -> HelmTestResult:
        """Run the chart's test hooks."""
        try:
            return self._helm.test(plugin.release_name, namespace=plugin.release_namespace, timeout=self._timeout)
        except KubernetesError as e:
            raise ChartEngineError(e.message) from e
