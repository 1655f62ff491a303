"""Ready condition aggregation.

Every aggregate owns an ordered list of checks. The first check that
reports a problem decides the Ready condition; if none does, the aggregate
is ready. Checks never write conditions themselves.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from fleet_plugin_operator.constants import LABEL_OWNED_BY
from fleet_plugin_operator.models.conditions import (
    Condition,
    ConditionType,
    StatusConditions,
    false_condition,
    true_condition,
)

READY_MESSAGE = "ready"

# A check returns the Ready=False message, or None if it has nothing to report
ReadinessCheck = Callable[[StatusConditions], str | None]


def compute_ready(conditions: StatusConditions, checks: Sequence[ReadinessCheck]) -> Condition:
    """Fold ``conditions`` through ``checks``; the first failing check wins."""
    for check in checks:
        message = check(conditions)
        if message is not None:
            return false_condition(ConditionType.READY, message=message)
    return true_condition(ConditionType.READY, message=READY_MESSAGE)


def _when_false(type_: ConditionType, message: str | None = None) -> ReadinessCheck:
    def check(conditions: StatusConditions) -> str | None:
        condition = conditions.get(type_)
        if condition is not None and condition.is_false():
            return message if message is not None else condition.message
        return None

    return check


def _when_true(type_: ConditionType, message: str | None = None) -> ReadinessCheck:
    def check(conditions: StatusConditions) -> str | None:
        condition = conditions.get(type_)
        if condition is not None and condition.is_true():
            return message if message is not None else condition.message
        return None

    return check


# =============================================================================
# Plugin
# =============================================================================

PLUGIN_READINESS_CHECKS: tuple[ReadinessCheck, ...] = (
    _when_false(ConditionType.CLUSTER_ACCESS_READY, "cluster access not ready"),
    _when_true(ConditionType.WAITING_FOR_DEPENDENCIES, "waiting for dependencies"),
    _when_true(ConditionType.HELM_RECONCILE_FAILED, "Helm reconcile failed"),
    _when_false(ConditionType.HELM_CHART_TEST_SUCCEEDED, "Helm Chart Test failed"),
    _when_false(ConditionType.WORKLOAD_READY),
)


def compute_plugin_ready(conditions: StatusConditions) -> Condition:
    return compute_ready(conditions, PLUGIN_READINESS_CHECKS)


# =============================================================================
# PluginPreset
# =============================================================================

PRESET_READINESS_CHECKS: tuple[ReadinessCheck, ...] = (
    _when_true(ConditionType.PLUGIN_FAILED, "Plugin reconciliation failed"),
    _when_true(ConditionType.PLUGIN_SKIPPED),
    _when_true(ConditionType.CLUSTER_LIST_EMPTY, "No cluster matches ClusterSelector"),
    _when_false(ConditionType.ALL_PLUGINS_READY),
)


def compute_preset_ready(conditions: StatusConditions) -> Condition:
    return compute_ready(conditions, PRESET_READINESS_CHECKS)


# =============================================================================
# Owner label
# =============================================================================


def compute_owner_label_condition(labels: dict[str, str], team_exists: bool) -> Condition:
    """OwnerLabelSet: the owner label is present and names an existing Team."""
    owner = labels.get(LABEL_OWNED_BY)
    if not owner:
        return false_condition(
            ConditionType.OWNER_LABEL_SET, reason="OwnerLabelMissing", message=f"Label {LABEL_OWNED_BY} is missing"
        )
    if not team_exists:
        return false_condition(
            ConditionType.OWNER_LABEL_SET,
            reason="OwnerLabelSetToNotExistingTeam",
            message=f"Label {LABEL_OWNED_BY} references the non-existing team {owner}",
        )
    return true_condition(ConditionType.OWNER_LABEL_SET)
