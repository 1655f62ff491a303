"""Dependency tracking between Plugins and the resources they read.

A resource read by a Plugin's option value carries the integration label and
an annotation listing the ``Kind/Name`` IDs of its readers, joined by ``;``.
All writes to the annotation are read-modify-write cycles retried on
conflict.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from fleet_plugin_operator.constants import (
    ANNOTATION_PLUGIN_TRACKING_ID,
    LABEL_PLUGIN_INTEGRATION,
    LABEL_VALUE_PLUGIN_INTEGRATION,
    TRACKING_SEPARATOR,
)
from fleet_plugin_operator.exceptions import PluginOperatorError, TrackingIDError
from fleet_plugin_operator.integrations.kubernetes.client import KubernetesClient
from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError, KubernetesNotFoundError

if TYPE_CHECKING:
    from fleet_plugin_operator.services.store import ResourceStore

logger = structlog.get_logger()

_conflict_retry = KubernetesClient.make_conflict_retry_decorator()


def tracking_id(kind: str, name: str) -> str:
    """Build the ``Kind/Name`` tracker ID."""
    return f"{kind}/{name}"


def parse_tracking_id(value: str) -> tuple[str, str]:
    """Split a tracker ID into kind and name.

    Raises:
        TrackingIDError: If the ID is not of the form ``Kind/Name``.
    """
    parts = value.split("/")
    if len(parts) != 2 or not all(parts):
        raise TrackingIDError(value)
    return parts[0], parts[1]


def split_trackers(value: str | None) -> list[str]:
    """Split an annotation value into tracker IDs, preserving order."""
    if not value:
        return []
    return [tracker for tracker in value.split(TRACKING_SEPARATOR) if tracker]


def find_untracked_objects(previous: list[str], current: list[str]) -> list[str]:
    """Objects tracked previously but not any more."""
    current_set = set(current)
    return [obj for obj in previous if obj not in current_set]


def add_tracker(obj: dict[str, Any], tracker: str) -> bool:
    """Label the object and append the tracker to its annotation.

    Returns:
        Whether the object was modified.
    """
    metadata = obj.setdefault("metadata", {})
    labels = metadata.get("labels") or {}
    annotations = metadata.get("annotations") or {}
    changed = False

    if LABEL_PLUGIN_INTEGRATION not in labels:
        labels[LABEL_PLUGIN_INTEGRATION] = LABEL_VALUE_PLUGIN_INTEGRATION
        metadata["labels"] = labels
        changed = True

    trackers = split_trackers(annotations.get(ANNOTATION_PLUGIN_TRACKING_ID))
    if tracker not in trackers:
        trackers.append(tracker)
        annotations[ANNOTATION_PLUGIN_TRACKING_ID] = TRACKING_SEPARATOR.join(trackers)
        metadata["annotations"] = annotations
        changed = True
    return changed


def remove_tracker(obj: dict[str, Any], tracker: str) -> bool:
    """Remove the tracker from the object's annotation.

    The annotation is dropped once no tracker remains.

    Returns:
        Whether the object was modified.
    """
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    trackers = split_trackers(annotations.get(ANNOTATION_PLUGIN_TRACKING_ID))
    if tracker not in trackers:
        return False
    remaining = [t for t in trackers if t != tracker]
    if remaining:
        annotations[ANNOTATION_PLUGIN_TRACKING_ID] = TRACKING_SEPARATOR.join(remaining)
    else:
        del annotations[ANNOTATION_PLUGIN_TRACKING_ID]
    obj["metadata"]["annotations"] = annotations
    return True


class DependencyTracker:
    """Maintains tracker annotations on referenced resources."""

    def __init__(self, store: ResourceStore) -> None:
        self._store = store
        self._log = logger.bind(entity="dependency_tracker")

    def annotate(self, kind: str, name: str, namespace: str, tracker: str) -> None:
        """Mark ``kind/name`` as read by ``tracker``.

        Raises:
            KubernetesError: If the object cannot be read or written after
                conflict retries.
        """

        @_conflict_retry
        def _update() -> None:
            obj = self._store.get(kind, name, namespace)
            if add_tracker(obj, tracker):
                self._store.replace(kind, obj, namespace)

        _update()
        self._log.debug("annotated_tracked_object", kind=kind, name=name, tracker=tracker)

    def remove(self, kind: str, name: str, namespace: str, tracker: str) -> None:
        """Remove ``tracker`` from the annotation of ``kind/name``.

        A missing object needs no cleanup.
        """

        @_conflict_retry
        def _update() -> None:
            try:
                obj = self._store.get(kind, name, namespace)
            except KubernetesNotFoundError:
                self._log.info("untracked_object_not_found", kind=kind, name=name, namespace=namespace)
                return
            if remove_tracker(obj, tracker):
                self._store.replace(kind, obj, namespace)
                self._log.info("removed_tracker", kind=kind, name=name, tracker=tracker)

        _update()

    def remove_untracked(
        self,
        namespace: str,
        tracker: str,
        previous: list[str],
        current: list[str],
    ) -> None:
        """Remove ``tracker`` from every object in ``previous`` but not ``current``.

        All objects are attempted before raising.

        Raises:
            TrackingIDError: If a previously tracked ID is malformed.
            PluginOperatorError: Aggregating every failed removal.
        """
        untracked = [parse_tracking_id(object_id) for object_id in find_untracked_objects(previous, current)]
        errors: list[str] = []
        for kind, name in untracked:
            object_id = tracking_id(kind, name)
            try:
                self.remove(kind, name, namespace, tracker)
            except KubernetesError as e:
                self._log.warning(
                    "tracker_cleanup_failed", tracked_object=object_id, tracker=tracker, error=str(e)
                )
                errors.append(f"{object_id}: {e}")
        if errors:
            raise PluginOperatorError("failed to remove tracking annotations: " + "; ".join(errors))
