"""Unit tests for Ready condition aggregation."""

from __future__ import annotations

import pytest

from fleet_plugin_operator.models.conditions import (
    ConditionType,
    StatusConditions,
    false_condition,
    true_condition,
    unknown_condition,
)
from fleet_plugin_operator.services.readiness import (
    compute_owner_label_condition,
    compute_plugin_ready,
    compute_preset_ready,
)


def _conditions(*conditions) -> StatusConditions:
    result = StatusConditions()
    result.set(*conditions)
    return result


@pytest.mark.unit
class TestPluginReady:
    """Tests for compute_plugin_ready."""

    def test_ready_without_problems(self) -> None:
        """Should be ready when no check reports a problem."""
        ready = compute_plugin_ready(
            _conditions(
                true_condition(ConditionType.CLUSTER_ACCESS_READY),
                false_condition(ConditionType.HELM_RECONCILE_FAILED),
                true_condition(ConditionType.WORKLOAD_READY),
                unknown_condition(ConditionType.HELM_CHART_TEST_SUCCEEDED),
            )
        )

        assert ready.is_true()
        assert ready.message == "ready"

    def test_first_failing_check_wins(self) -> None:
        """Should report cluster access before reconcile failures."""
        ready = compute_plugin_ready(
            _conditions(
                false_condition(ConditionType.CLUSTER_ACCESS_READY),
                true_condition(ConditionType.HELM_RECONCILE_FAILED),
            )
        )

        assert ready.is_false()
        assert ready.message == "cluster access not ready"

    def test_waiting_for_dependencies(self) -> None:
        """Should report pending dependencies."""
        ready = compute_plugin_ready(_conditions(true_condition(ConditionType.WAITING_FOR_DEPENDENCIES)))

        assert ready.message == "waiting for dependencies"

    def test_chart_test_failure(self) -> None:
        """Should report failed chart tests."""
        ready = compute_plugin_ready(_conditions(false_condition(ConditionType.HELM_CHART_TEST_SUCCEEDED)))

        assert ready.message == "Helm Chart Test failed"

    def test_workload_message_is_propagated(self) -> None:
        """Should reuse the workload condition's message."""
        ready = compute_plugin_ready(
            _conditions(false_condition(ConditionType.WORKLOAD_READY, message="Workload is not ready: Pod/a"))
        )

        assert ready.message == "Workload is not ready: Pod/a"


@pytest.mark.unit
class TestPresetReady:
    """Tests for compute_preset_ready."""

    def test_failed_plugins(self) -> None:
        """Should report failed plugins first."""
        ready = compute_preset_ready(
            _conditions(
                true_condition(ConditionType.PLUGIN_FAILED, message="a: boom"),
                true_condition(ConditionType.PLUGIN_SKIPPED, message="Skipped existing plugins: b"),
            )
        )

        assert ready.message == "Plugin reconciliation failed"

    def test_skipped_plugins(self) -> None:
        """Should surface the skipped plugins."""
        ready = compute_preset_ready(
            _conditions(true_condition(ConditionType.PLUGIN_SKIPPED, message="Skipped existing plugins: b"))
        )

        assert ready.message == "Skipped existing plugins: b"

    def test_plugins_not_ready(self) -> None:
        """Should surface the readiness summary."""
        ready = compute_preset_ready(
            _conditions(false_condition(ConditionType.ALL_PLUGINS_READY, message="1 of 2 plugins are ready"))
        )

        assert ready.message == "1 of 2 plugins are ready"

    def test_ready(self) -> None:
        """Should be ready with all plugins ready."""
        assert compute_preset_ready(_conditions(true_condition(ConditionType.ALL_PLUGINS_READY))).is_true()


@pytest.mark.unit
class TestOwnerLabel:
    """Tests for compute_owner_label_condition."""

    def test_missing_label(self) -> None:
        """Should report a missing owner label."""
        condition = compute_owner_label_condition({}, team_exists=False)

        assert condition.is_false()
        assert condition.reason == "OwnerLabelMissing"

    def test_unknown_team(self) -> None:
        """Should report an owner that is not a Team."""
        condition = compute_owner_label_condition({"greenhouse.sap/owned-by": "ghost"}, team_exists=False)

        assert condition.reason == "OwnerLabelSetToNotExistingTeam"
        assert "ghost" in condition.message

    def test_existing_team(self) -> None:
        """Should be true for an existing team."""
        assert compute_owner_label_condition({"greenhouse.sap/owned-by": "a"}, team_exists=True).is_true()
