"""kopf handlers of the operator.

Change handlers run a full reconcile. Failures are retried with the delay
of the shared rate limiter, and periodic re-reconciliation is driven by
timers. Secondary resources re-enqueue the objects they affect by touching
their reconcile annotation.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import kopf
import structlog

from fleet_plugin_operator.constants import (
    API_GROUP,
    API_VERSION,
    CLUSTER_PLUGIN_DEFINITION_KIND,
    CLUSTER_PLUGIN_DEFINITION_PLURAL,
    CLUSTER_PLURAL,
    FINALIZER,
    LABEL_OWNED_BY,
    LABEL_PLUGIN_PRESET,
    PLUGIN_DEFINITION_KIND,
    PLUGIN_DEFINITION_PLURAL,
    PLUGIN_KIND,
    PLUGIN_PLURAL,
    PLUGIN_PRESET_KIND,
    PLUGIN_PRESET_PLURAL,
    TEAM_PLURAL,
    UNINSTALL_REQUEUE_INTERVAL,
)
from fleet_plugin_operator.controller.runtime import OperatorRuntime, get_runtime, start_runtime, stop_runtime
from fleet_plugin_operator.controller.watches import (
    HELM_OWNER,
    HELM_OWNER_LABEL,
    HELM_RELEASE_NAME_LABEL,
    plugins_for_cluster,
    plugins_for_definition,
    plugins_for_release,
    preset_status_stale,
)
from fleet_plugin_operator.core.config.models import OperatorConfig
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError
from fleet_plugin_operator.models.plugin import Plugin
from fleet_plugin_operator.services.plugin_reconciler import ReconcileResult

logger = structlog.get_logger()

config = OperatorConfig.from_env()


def object_key(kind: str, namespace: str | None, name: str | None) -> str:
    return f"{kind}/{namespace or ''}/{name or ''}"


def finish(runtime: OperatorRuntime, key: str, result: ReconcileResult, *, requeue: bool = True) -> None:
    """Translate a reconcile result into kopf's retry semantics.

    Errors are retried after the rate limiter's delay. Requeues shorter than
    the status interval are retried explicitly; longer ones are left to the
    timer.

    Raises:
        kopf.TemporaryError: If the object must be reconciled again.
    """
    if result.error:
        delay = runtime.rate_limiter.when(key)
        logger.warning(
            "reconcile_retry_scheduled", key=key, delay=delay, retries=runtime.rate_limiter.num_requeues(key)
        )
        raise kopf.TemporaryError(result.error, delay=delay)
    runtime.rate_limiter.forget(key)
    if not requeue:
        return
    if not result.done:
        delay = result.requeue_after or UNINSTALL_REQUEUE_INTERVAL
        raise kopf.TemporaryError("waiting for deletion to complete", delay=delay.total_seconds())
    if result.requeue_after is not None and result.requeue_after < timedelta(seconds=runtime.config.status_interval):
        raise kopf.TemporaryError("requeued", delay=result.requeue_after.total_seconds())


# =============================================================================
# Lifecycle
# =============================================================================


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Apply kopf settings and build the shared runtime."""
    settings.execution.max_workers = config.max_workers
    settings.persistence.finalizer = FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=API_GROUP,
        key="last-handled-configuration",
    )
    start_runtime(config)
    logger.info("operator_started", max_workers=config.max_workers, namespace=config.watch_namespace)


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    stop_runtime()
    logger.info("operator_stopped")


# =============================================================================
# Plugin
# =============================================================================


@kopf.on.create(API_GROUP, API_VERSION, PLUGIN_PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, PLUGIN_PLURAL)
@kopf.on.resume(API_GROUP, API_VERSION, PLUGIN_PLURAL)
@kopf.on.delete(API_GROUP, API_VERSION, PLUGIN_PLURAL)
def reconcile_plugin(body: kopf.Body, namespace: str | None, name: str | None, **_: Any) -> None:
    runtime = get_runtime()
    result = runtime.plugins.reconcile(dict(body))
    finish(runtime, object_key(PLUGIN_KIND, namespace, name), result)


@kopf.on.timer(API_GROUP, API_VERSION, PLUGIN_PLURAL, interval=config.status_interval, idle=config.status_interval)
def poll_plugin(body: kopf.Body, meta: kopf.Meta, namespace: str | None, name: str | None, **_: Any) -> None:
    """Re-reconcile periodically; workload health emits no events of its own."""
    if meta.get("deletionTimestamp"):
        return
    runtime = get_runtime()
    result = runtime.plugins.reconcile(dict(body))
    finish(runtime, object_key(PLUGIN_KIND, namespace, name), result, requeue=False)


# =============================================================================
# PluginPreset
# =============================================================================


@kopf.on.create(API_GROUP, API_VERSION, PLUGIN_PRESET_PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, PLUGIN_PRESET_PLURAL)
@kopf.on.resume(API_GROUP, API_VERSION, PLUGIN_PRESET_PLURAL)
@kopf.on.delete(API_GROUP, API_VERSION, PLUGIN_PRESET_PLURAL)
def reconcile_preset(body: kopf.Body, namespace: str | None, name: str | None, **_: Any) -> None:
    runtime = get_runtime()
    result = runtime.presets.reconcile(dict(body))
    finish(runtime, object_key(PLUGIN_PRESET_KIND, namespace, name), result)


@kopf.on.timer(
    API_GROUP, API_VERSION, PLUGIN_PRESET_PLURAL, interval=config.status_interval, idle=config.status_interval
)
def poll_preset(body: kopf.Body, meta: kopf.Meta, namespace: str | None, name: str | None, **_: Any) -> None:
    if meta.get("deletionTimestamp"):
        return
    runtime = get_runtime()
    result = runtime.presets.reconcile(dict(body))
    finish(runtime, object_key(PLUGIN_PRESET_KIND, namespace, name), result, requeue=False)


# =============================================================================
# Secondary watches
# =============================================================================


def _enqueue_plugins(runtime: OperatorRuntime, plugins: list[Plugin], trigger: str) -> None:
    for plugin in plugins:
        try:
            runtime.enqueue(PLUGIN_KIND, plugin.name, plugin.namespace)
        except KubernetesError as e:
            logger.warning("plugin_enqueue_failed", plugin=plugin.name, trigger=trigger, error=str(e))


@kopf.on.event("v1", "secrets", labels={HELM_OWNER_LABEL: HELM_OWNER})
def helm_release_changed(
    type: str | None, labels: kopf.Labels, namespace: str | None, **_: Any  # noqa: A002
) -> None:
    """Release secrets of the control-plane cluster map back to their Plugins."""
    if type is None or not namespace:
        return
    runtime = get_runtime()
    objs = runtime.store.list(PLUGIN_KIND, all_namespaces=True)
    release_name = labels.get(HELM_RELEASE_NAME_LABEL, "")
    _enqueue_plugins(runtime, plugins_for_release(objs, release_name, namespace), "helm_release")


@kopf.on.event(API_GROUP, API_VERSION, PLUGIN_DEFINITION_PLURAL)
def plugin_definition_changed(type: str | None, name: str | None, namespace: str | None, **_: Any) -> None:  # noqa: A002
    if type is None or not name:
        return
    runtime = get_runtime()
    objs = runtime.store.list(PLUGIN_KIND, namespace)
    _enqueue_plugins(runtime, plugins_for_definition(objs, PLUGIN_DEFINITION_KIND, name), "plugin_definition")


@kopf.on.event(API_GROUP, API_VERSION, CLUSTER_PLUGIN_DEFINITION_PLURAL)
def cluster_plugin_definition_changed(type: str | None, name: str | None, **_: Any) -> None:  # noqa: A002
    if type is None or not name:
        return
    runtime = get_runtime()
    objs = runtime.store.list(PLUGIN_KIND, all_namespaces=True)
    _enqueue_plugins(
        runtime, plugins_for_definition(objs, CLUSTER_PLUGIN_DEFINITION_KIND, name), "cluster_plugin_definition"
    )


@kopf.on.event(API_GROUP, API_VERSION, CLUSTER_PLURAL)
def cluster_changed(type: str | None, name: str | None, namespace: str | None, **_: Any) -> None:  # noqa: A002
    """Cluster changes affect its Plugins and the membership of every preset."""
    if type is None or not name:
        return
    runtime = get_runtime()
    _enqueue_plugins(runtime, plugins_for_cluster(runtime.store.list(PLUGIN_KIND, namespace), name), "cluster")
    for obj in runtime.store.list(PLUGIN_PRESET_KIND, namespace):
        preset_name = (obj.get("metadata") or {}).get("name", "")
        try:
            runtime.enqueue(PLUGIN_PRESET_KIND, preset_name, namespace or "")
        except KubernetesError as e:
            logger.warning("preset_enqueue_failed", preset=preset_name, cluster=name, error=str(e))


@kopf.on.event(API_GROUP, API_VERSION, TEAM_PLURAL)
def team_changed(type: str | None, name: str | None, namespace: str | None, **_: Any) -> None:  # noqa: A002
    if type is None or not name:
        return
    runtime = get_runtime()
    objs = runtime.store.list(PLUGIN_KIND, namespace, label_selector=f"{LABEL_OWNED_BY}={name}")
    _enqueue_plugins(runtime, [Plugin.from_k8s_object(obj) for obj in objs], "team")


@kopf.on.event(API_GROUP, API_VERSION, PLUGIN_PLURAL, labels={LABEL_PLUGIN_PRESET: kopf.PRESENT})
def managed_plugin_changed(
    type: str | None, body: kopf.Body, labels: kopf.Labels, namespace: str | None, **_: Any  # noqa: A002
) -> None:
    """Refresh the owning preset when a Plugin's readiness changed."""
    if type is None or not namespace:
        return
    runtime = get_runtime()
    preset_name = labels[LABEL_PLUGIN_PRESET]
    try:
        preset = runtime.store.find(PLUGIN_PRESET_KIND, preset_name, namespace)
        if preset is not None and preset_status_stale(preset, dict(body)):
            runtime.enqueue(PLUGIN_PRESET_KIND, preset_name, namespace)
    except KubernetesError as e:
        logger.warning("preset_enqueue_failed", preset=preset_name, error=str(e))

