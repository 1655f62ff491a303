"""Typed status conditions.

Conditions are independent flags that are overwritten idempotently on every
reconcile. Their combined interpretation lives in ``services.readiness``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field

from fleet_plugin_operator.models.base import CamelModel, now_timestamp

ConditionStatus = Literal["True", "False", "Unknown"]


class ConditionType(StrEnum):
    """Closed set of condition types written by the operator."""

    READY = "Ready"
    DELETE = "Delete"
    OWNER_LABEL_SET = "OwnerLabelSet"

    # Plugin
    CLUSTER_ACCESS_READY = "ClusterAccessReady"
    HELM_RECONCILE_FAILED = "HelmReconcileFailed"
    HELM_DRIFT_DETECTED = "HelmDriftDetected"
    STATUS_UP_TO_DATE = "StatusUpToDate"
    WORKLOAD_READY = "WorkloadReady"
    HELM_CHART_TEST_SUCCEEDED = "HelmChartTestSucceeded"
    WAITING_FOR_DEPENDENCIES = "WaitingForDependencies"

    # PluginPreset
    PLUGIN_SKIPPED = "PluginSkipped"
    PLUGIN_FAILED = "PluginFailed"
    ALL_PLUGINS_READY = "AllPluginsReady"
    CLUSTER_LIST_EMPTY = "ClusterListEmpty"


class ConditionReason(StrEnum):
    """Reason codes attached to conditions."""

    PLUGIN_DEFINITION_NOT_FOUND = "PluginDefinitionNotFound"
    HELM_UNINSTALL_FAILED = "HelmUninstallFailed"
    PLUGIN_RECONCILE_FAILED = "PluginReconcileFailed"
    VALUE_RESOLUTION_FAILED = "ValueResolutionFailed"
    CLUSTER_ACCESS_FAILED = "ClusterAccessFailed"
    DELETED = "Deleted"
    PENDING_DELETION = "PendingDeletion"
    FAILING_DELETION = "FailingDeletion"
    SCHEDULED_DELETION = "ScheduledDeletion"


class Condition(CamelModel):
    """A single status condition."""

    type: str
    status: ConditionStatus = "Unknown"
    reason: str = ""
    message: str = ""
    last_transition_time: str | None = None

    def is_true(self) -> bool:
        return self.status == "True"

    def is_false(self) -> bool:
        return self.status == "False"

    def is_unknown(self) -> bool:
        return self.status == "Unknown"

    def equals(self, other: Condition) -> bool:
        """Compare all fields except the transition time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )


def true_condition(type_: str, reason: str = "", message: str = "") -> Condition:
    return Condition(type=type_, status="True", reason=reason, message=message)


def false_condition(type_: str, reason: str = "", message: str = "") -> Condition:
    return Condition(type=type_, status="False", reason=reason, message=message)


def unknown_condition(type_: str, reason: str = "", message: str = "") -> Condition:
    return Condition(type=type_, status="Unknown", reason=reason, message=message)


class StatusConditions(CamelModel):
    """Ordered list of conditions keyed by type."""

    conditions: list[Condition] = Field(default_factory=list)

    def get(self, type_: str) -> Condition | None:
        """Return the condition of the given type, if present."""
        for condition in self.conditions:
            if condition.type == type_:
                return condition
        return None

    def set(self, *conditions: Condition) -> None:
        """Insert or overwrite conditions by type.

        The transition time is only moved forward when the status changes,
        so that repeated reconciles leave unchanged conditions untouched.
        """
        for new in conditions:
            existing = self.get(new.type)
            if existing is None:
                new.last_transition_time = new.last_transition_time or now_timestamp()
                self.conditions.append(new)
                continue
            if existing.status != new.status:
                existing.last_transition_time = now_timestamp()
            existing.status = new.status
            existing.reason = new.reason
            existing.message = new.message

    def init(self, *types: str) -> None:
        """Add Unknown conditions for every type not yet present."""
        for type_ in types:
            if self.get(type_) is None:
                self.set(unknown_condition(type_))

    def is_true(self, type_: str) -> bool:
        condition = self.get(type_)
        return condition is not None and condition.is_true()

    def is_false(self, type_: str) -> bool:
        condition = self.get(type_)
        return condition is not None and condition.is_false()
