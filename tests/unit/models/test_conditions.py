"""Unit tests for status conditions."""

from __future__ import annotations

import pytest

from fleet_plugin_operator.models.conditions import (
    ConditionType,
    StatusConditions,
    false_condition,
    true_condition,
)


@pytest.mark.unit
class TestStatusConditions:
    """Tests for StatusConditions."""

    def test_init_adds_unknown_once(self) -> None:
        """Should add Unknown conditions only for missing types."""
        conditions = StatusConditions()
        conditions.set(true_condition(ConditionType.READY))

        conditions.init(ConditionType.READY, ConditionType.WORKLOAD_READY)

        assert conditions.get(ConditionType.READY).is_true()
        assert conditions.get(ConditionType.WORKLOAD_READY).is_unknown()
        assert len(conditions.conditions) == 2

    def test_set_overwrites_by_type(self) -> None:
        """Should overwrite an existing condition in place."""
        conditions = StatusConditions()
        conditions.set(true_condition(ConditionType.READY, message="ready"))

        conditions.set(false_condition(ConditionType.READY, reason="Broken", message="broken"))

        ready = conditions.get(ConditionType.READY)
        assert ready.is_false()
        assert ready.reason == "Broken"
        assert ready.message == "broken"
        assert len(conditions.conditions) == 1

    def test_transition_time_kept_without_status_change(self) -> None:
        """Should keep the transition time when only the message changes."""
        conditions = StatusConditions()
        conditions.set(true_condition(ConditionType.READY, message="a"))
        conditions.get(ConditionType.READY).last_transition_time = "2024-01-01T00:00:00Z"

        conditions.set(true_condition(ConditionType.READY, message="b"))

        assert conditions.get(ConditionType.READY).last_transition_time == "2024-01-01T00:00:00Z"

    def test_transition_time_moves_on_status_change(self) -> None:
        """Should move the transition time when the status flips."""
        conditions = StatusConditions()
        conditions.set(true_condition(ConditionType.READY))
        conditions.get(ConditionType.READY).last_transition_time = "2024-01-01T00:00:00Z"

        conditions.set(false_condition(ConditionType.READY))

        assert conditions.get(ConditionType.READY).last_transition_time != "2024-01-01T00:00:00Z"

    def test_is_true_and_is_false_on_missing(self) -> None:
        """Should report neither True nor False for a missing condition."""
        conditions = StatusConditions()

        assert conditions.is_true(ConditionType.READY) is False
        assert conditions.is_false(ConditionType.READY) is False

    def test_equals_ignores_transition_time(self) -> None:
        """Should compare conditions without their transition times."""
        a = true_condition(ConditionType.READY, message="ready")
        b = true_condition(ConditionType.READY, message="ready")
        a.last_transition_time = "2024-01-01T00:00:00Z"

        assert a.equals(b)
        assert not a.equals(false_condition(ConditionType.READY, message="ready"))
