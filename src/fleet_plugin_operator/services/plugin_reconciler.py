"""Reconciliation of a single Plugin.

One pass runs the steps strictly in order: cluster access, deletion
schedule, dependencies, definition lookup, value resolution, release, status
collection. Conditions are folded into Ready and written back at the end of
every pass, whichever step ended it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from fleet_plugin_operator.constants import (
    ANNOTATION_SUSPEND,
    CLUSTER_KIND,
    DELETION_POLICY_RETAIN,
    DEPENDENCY_REQUEUE_INTERVAL,
    LABEL_OWNED_BY,
    PLUGIN_KIND,
    STATUS_REQUEUE_INTERVAL,
    TEAM_KIND,
    UNINSTALL_REQUEUE_INTERVAL,
)
from fleet_plugin_operator.exceptions import ClusterAccessError, DefinitionNotFoundError, PluginOperatorError
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError
from fleet_plugin_operator.models.base import now_timestamp
from fleet_plugin_operator.models.cluster import Cluster
from fleet_plugin_operator.models.conditions import (
    ConditionReason,
    ConditionType,
    false_condition,
    true_condition,
)
from fleet_plugin_operator.models.plugin import HelmReleaseStatus, Plugin
from fleet_plugin_operator.services.chart_engine import HelmChartEngine
from fleet_plugin_operator.services.chart_test import ChartTestRunner
from fleet_plugin_operator.services.definitions import get_definition_spec
from fleet_plugin_operator.services.readiness import compute_owner_label_condition, compute_plugin_ready
from fleet_plugin_operator.services.release import ReleasePipeline, technical_labels
from fleet_plugin_operator.services.store import merge_patch
from fleet_plugin_operator.services.workload_status import WorkloadStatusCollector

if TYPE_CHECKING:
    from fleet_plugin_operator.core.config.models import HelmConfig
    from fleet_plugin_operator.services.chart_engine import ChartEngine
    from fleet_plugin_operator.services.cluster_access import ClusterAccess, ClusterClientFactory
    from fleet_plugin_operator.services.store import ResourceStore
    from fleet_plugin_operator.services.tracking import DependencyTracker
    from fleet_plugin_operator.services.values import ValueResolver

logger = structlog.get_logger()

PLUGIN_EXPOSED_CONDITIONS = (
    ConditionType.READY,
    ConditionType.CLUSTER_ACCESS_READY,
    ConditionType.HELM_DRIFT_DETECTED,
    ConditionType.HELM_RECONCILE_FAILED,
    ConditionType.STATUS_UP_TO_DATE,
    ConditionType.WORKLOAD_READY,
    ConditionType.HELM_CHART_TEST_SUCCEEDED,
    ConditionType.OWNER_LABEL_SET,
    ConditionType.WAITING_FOR_DEPENDENCIES,
)

EngineFactory = Callable[["ClusterAccess"], "ChartEngine"]


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass.

    Attributes:
        requeue_after: Reconcile again after this delay.
        error: Set when the pass failed and should be retried with backoff.
        done: For deletions, whether the finalizer may be removed.
    """

    requeue_after: timedelta | None = None
    error: str | None = None
    done: bool = True


def is_suspended(plugin: Plugin) -> bool:
    return plugin.metadata.annotations.get(ANNOTATION_SUSPEND) == "true"


class PluginReconciler:
    """Drives a Plugin towards its declared state.

    Args:
        store: Control-plane resource store.
        clusters: Builds clients for the Plugin's target cluster.
        resolver: Resolves option values.
        tracker: Maintains tracker annotations on referenced resources.
        helm_config: Chart engine settings.
        dns_domain: Base domain of service-proxy URLs.
        engine_factory: Builds the chart engine for a target cluster.
    """

    def __init__(
        self,
        store: ResourceStore,
        clusters: ClusterClientFactory,
        resolver: ValueResolver,
        tracker: DependencyTracker,
        helm_config: HelmConfig,
        *,
        dns_domain: str = "",
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._store = store
        self._clusters = clusters
        self._resolver = resolver
        self._tracker = tracker
        self._helm_config = helm_config
        self._dns_domain = dns_domain
        self._engine_factory = engine_factory or self._helm_engine
        self._log = logger.bind(entity="plugin_reconciler")

    def _helm_engine(self, access: ClusterAccess) -> ChartEngine:
        return HelmChartEngine(access, self._store, self._helm_config)

    # =========================================================================
    # Entry point
    # =========================================================================

    def reconcile(self, obj: dict[str, Any]) -> ReconcileResult:
        """Reconcile the Plugin given in its API representation.

        Writes the status and technical labels back to the API server.
        """
        plugin = Plugin.from_k8s_object(obj)
        previous_status = plugin.status.to_dict()
        log = self._log.bind(plugin=plugin.name, namespace=plugin.namespace)

        try:
            if plugin.metadata.is_deleting:
                result = self.ensure_deleted(plugin)
            else:
                result = self.ensure_created(plugin)
        except KubernetesError as e:
            result = ReconcileResult(error=str(e), done=False)

        self._set_summary_conditions(plugin)
        plugin.status.last_reconciled_at = now_timestamp()
        try:
            self._write_back(plugin, previous_status)
        except KubernetesError as e:
            log.warning("plugin_status_update_failed", error=str(e))
            if result.error is None:
                result.error = f"failed to update status: {e}"

        if result.error:
            log.warning("plugin_reconcile_failed", error=result.error)
        else:
            log.info("plugin_reconciled", requeue_after=result.requeue_after)
        return result

    def _set_summary_conditions(self, plugin: Plugin) -> None:
        owner = plugin.metadata.labels.get(LABEL_OWNED_BY)
        team_exists = False
        if owner:
            try:
                team_exists = self._store.find(TEAM_KIND, owner, plugin.namespace) is not None
            except KubernetesError as e:
                self._log.warning("owner_team_lookup_failed", plugin=plugin.name, team=owner, error=str(e))
        plugin.conditions.set(
            compute_plugin_ready(plugin.conditions),
            compute_owner_label_condition(plugin.metadata.labels, team_exists),
        )

    def _write_back(self, plugin: Plugin, previous_status: dict[str, Any]) -> None:
        if not plugin.metadata.is_deleting:
            labels = technical_labels(plugin)
            if labels:
                self._store.patch(PLUGIN_KIND, plugin.name, {"metadata": {"labels": labels}}, plugin.namespace)
        patch = merge_patch(previous_status, plugin.status.to_dict())
        self._store.patch_status(PLUGIN_KIND, plugin.name, patch, plugin.namespace)

    # =========================================================================
    # Creation / update
    # =========================================================================

    def ensure_created(self, plugin: Plugin) -> ReconcileResult:
        """Run one reconcile pass for a live Plugin.

        Conditions on ``plugin`` are updated in place.
        """
        plugin.conditions.init(*PLUGIN_EXPOSED_CONDITIONS)
        if plugin.status.helm_release_status is None:
            plugin.status.helm_release_status = HelmReleaseStatus()

        try:
            access = self._clusters.get_client_for(plugin)
        except ClusterAccessError as e:
            plugin.conditions.set(false_condition(ConditionType.CLUSTER_ACCESS_READY, message=str(e)))
            return ReconcileResult(error=f"cannot access cluster: {e}")
        plugin.conditions.set(true_condition(ConditionType.CLUSTER_ACCESS_READY))

        with access:
            return self._reconcile_on_cluster(plugin, access)

    def _reconcile_on_cluster(self, plugin: Plugin, access: ClusterAccess) -> ReconcileResult:
        log = self._log.bind(plugin=plugin.name, namespace=plugin.namespace, cluster=plugin.spec.cluster_name)

        scheduled = self._check_deletion_schedule(plugin)
        if scheduled is not None:
            return scheduled

        waiting = self._check_dependencies(plugin)
        if waiting is not None:
            return waiting

        try:
            definition = get_definition_spec(self._store, plugin.spec.plugin_definition_ref, plugin.namespace)
        except DefinitionNotFoundError as e:
            plugin.conditions.set(
                true_condition(
                    ConditionType.HELM_RECONCILE_FAILED,
                    reason=ConditionReason.PLUGIN_DEFINITION_NOT_FOUND,
                    message=str(e),
                )
            )
            return ReconcileResult(error=str(e))
        except KubernetesError as e:
            return ReconcileResult(error=f"failed to get {plugin.spec.plugin_definition_ref.kind}: {e}")

        try:
            resolved = self._resolver.resolve(plugin, definition)
        except (PluginOperatorError, KubernetesError) as e:
            plugin.conditions.set(
                true_condition(
                    ConditionType.HELM_RECONCILE_FAILED,
                    reason=ConditionReason.VALUE_RESOLUTION_FAILED,
                    message=str(e),
                )
            )
            return ReconcileResult(error=f"failed to resolve option values: {e}")
        plugin.status.tracked_objects = resolved.tracked_objects

        engine = self._engine_factory(access)
        pipeline = ReleasePipeline(engine, self._store, self._dns_domain)
        if is_suspended(plugin):
            log.info("plugin_suspended")
        else:
            pipeline.reconcile_release(plugin, definition, resolved.values)

        # Status collection runs even when the release step failed
        release = pipeline.reconcile_status(plugin, definition, resolved.values)
        WorkloadStatusCollector(access.client).reconcile(plugin, release)
        ChartTestRunner(engine).reconcile(plugin)

        failed = plugin.conditions.get(ConditionType.HELM_RECONCILE_FAILED)
        if failed is not None and failed.is_true():
            return ReconcileResult(error=f"helm reconcile failed: {failed.message}")
        return ReconcileResult(requeue_after=STATUS_REQUEUE_INTERVAL)

    def _check_deletion_schedule(self, plugin: Plugin) -> ReconcileResult | None:
        """Hold the Plugin while its cluster is scheduled for deletion."""
        cluster_name = plugin.spec.cluster_name
        if not cluster_name:
            return None
        obj = self._store.find(CLUSTER_KIND, cluster_name, plugin.namespace)
        if obj is None:
            return None
        schedule = Cluster.from_k8s_object(obj).deletion_schedule()
        if schedule is None:
            return None

        plugin.conditions.set(
            false_condition(
                ConditionType.DELETE,
                reason=ConditionReason.SCHEDULED_DELETION,
                message=f"cluster {cluster_name} is scheduled for deletion at {schedule.isoformat()}",
            )
        )
        remaining = schedule - datetime.now(UTC)
        return ReconcileResult(requeue_after=max(remaining, DEPENDENCY_REQUEUE_INTERVAL))

    def _check_dependencies(self, plugin: Plugin) -> ReconcileResult | None:
        """Wait until every Plugin in ``waitFor`` exists and is Ready."""
        waiting: list[str] = []
        for item in plugin.spec.wait_for:
            name = item.plugin_ref.resolve_name(plugin.spec.cluster_name)
            obj = self._store.find(PLUGIN_KIND, name, plugin.namespace)
            if obj is None or not Plugin.from_k8s_object(obj).conditions.is_true(ConditionType.READY):
                waiting.append(name)

        if waiting:
            plugin.conditions.set(
                true_condition(
                    ConditionType.WAITING_FOR_DEPENDENCIES,
                    message="waiting for plugins: " + ", ".join(waiting),
                )
            )
            return ReconcileResult(requeue_after=DEPENDENCY_REQUEUE_INTERVAL)
        plugin.conditions.set(false_condition(ConditionType.WAITING_FOR_DEPENDENCIES))
        return None

    # =========================================================================
    # Deletion
    # =========================================================================

    def ensure_deleted(self, plugin: Plugin) -> ReconcileResult:
        """Uninstall the release of a deleted Plugin.

        ``done`` stays False until the release is gone.
        """
        log = self._log.bind(plugin=plugin.name, namespace=plugin.namespace)

        if plugin.spec.deletion_policy == DELETION_POLICY_RETAIN:
            log.info("skipping_helm_release_deletion", deletion_policy=DELETION_POLICY_RETAIN)
            plugin.conditions.set(false_condition(ConditionType.HELM_RECONCILE_FAILED))
            self._remove_trackers(plugin)
            return ReconcileResult()

        try:
            access = self._clusters.get_client_for(plugin)
        except ClusterAccessError as e:
            plugin.conditions.set(false_condition(ConditionType.CLUSTER_ACCESS_READY, message=str(e)))
            return ReconcileResult(error=f"cannot access cluster: {e}", done=False)

        with access:
            pipeline = ReleasePipeline(self._engine_factory(access), self._store, self._dns_domain)
            try:
                done = pipeline.uninstall(plugin)
            except PluginOperatorError as e:
                plugin.conditions.set(
                    true_condition(
                        ConditionType.HELM_RECONCILE_FAILED,
                        reason=ConditionReason.HELM_UNINSTALL_FAILED,
                        message=str(e),
                    )
                )
                return ReconcileResult(error=str(e), done=False)

        if not done:
            return ReconcileResult(requeue_after=UNINSTALL_REQUEUE_INTERVAL, done=False)

        plugin.conditions.set(false_condition(ConditionType.HELM_RECONCILE_FAILED))
        self._remove_trackers(plugin)
        return ReconcileResult()

    def _remove_trackers(self, plugin: Plugin) -> None:
        try:
            self._tracker.remove_untracked(plugin.namespace, plugin.tracking_id, plugin.status.tracked_objects, [])
        except PluginOperatorError as e:
            self._log.warning("tracker_cleanup_failed", plugin=plugin.name, error=str(e))
        plugin.status.tracked_objects = []
