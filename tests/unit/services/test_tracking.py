"""Unit tests for dependency tracking."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fleet_plugin_operator.exceptions import PluginOperatorError, TrackingIDError
from fleet_plugin_operator.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesError,
    KubernetesNotFoundError,
)
from fleet_plugin_operator.services.tracking import (
    DependencyTracker,
    add_tracker,
    find_untracked_objects,
    parse_tracking_id,
    remove_tracker,
    split_trackers,
)

ANNOTATION = "greenhouse.sap/plugin-tracking-id"
LABEL = "greenhouse.sap/plugin-integration"


def _obj(trackers: str | None = None) -> dict:
    annotations = {ANNOTATION: trackers} if trackers is not None else {}
    return {"kind": "Plugin", "metadata": {"name": "db", "namespace": "org", "annotations": annotations}}


# ===========================================================================
# TestTrackerIDs
# ===========================================================================


@pytest.mark.unit
class TestTrackerIDs:
    """Tests for tracker ID helpers."""

    def test_parse(self) -> None:
        """Should split Kind/Name."""
        assert parse_tracking_id("Plugin/web") == ("Plugin", "web")

    @pytest.mark.parametrize("value", ["Plugin", "Plugin/", "/web", "a/b/c", ""])
    def test_parse_malformed(self, value: str) -> None:
        """Should reject malformed IDs."""
        with pytest.raises(TrackingIDError):
            parse_tracking_id(value)

    def test_split_ignores_empty_entries(self) -> None:
        """Should drop empty segments."""
        assert split_trackers("Plugin/a;;Plugin/b;") == ["Plugin/a", "Plugin/b"]
        assert split_trackers(None) == []

    def test_find_untracked(self) -> None:
        """Should return the set difference in previous order."""
        assert find_untracked_objects(["Plugin/a", "Plugin/b", "Plugin/c"], ["Plugin/b"]) == [
            "Plugin/a",
            "Plugin/c",
        ]


# ===========================================================================
# TestAnnotationMutation
# ===========================================================================


@pytest.mark.unit
class TestAnnotationMutation:
    """Tests for add_tracker and remove_tracker."""

    def test_add_labels_and_annotates(self) -> None:
        """Should add the integration label and the tracker."""
        obj = _obj()

        assert add_tracker(obj, "Plugin/web") is True
        assert obj["metadata"]["labels"][LABEL] == "true"
        assert obj["metadata"]["annotations"][ANNOTATION] == "Plugin/web"

    def test_add_is_idempotent(self) -> None:
        """Should never duplicate a tracker."""
        obj = _obj("Plugin/web")
        obj["metadata"]["labels"] = {LABEL: "true"}

        assert add_tracker(obj, "Plugin/web") is False
        assert obj["metadata"]["annotations"][ANNOTATION] == "Plugin/web"

    def test_add_appends(self) -> None:
        """Should append to existing trackers."""
        obj = _obj("Plugin/a")

        add_tracker(obj, "Plugin/b")

        assert obj["metadata"]["annotations"][ANNOTATION] == "Plugin/a;Plugin/b"

    def test_remove_keeps_others(self) -> None:
        """Should remove only the given tracker."""
        obj = _obj("Plugin/a;Plugin/b")

        assert remove_tracker(obj, "Plugin/a") is True
        assert obj["metadata"]["annotations"][ANNOTATION] == "Plugin/b"

    def test_remove_last_drops_annotation(self) -> None:
        """Should drop the annotation once empty."""
        obj = _obj("Plugin/a")

        remove_tracker(obj, "Plugin/a")

        assert ANNOTATION not in obj["metadata"]["annotations"]

    def test_remove_absent(self) -> None:
        """Should report no change for an absent tracker."""
        assert remove_tracker(_obj("Plugin/a"), "Plugin/b") is False


# ===========================================================================
# TestDependencyTracker
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestDependencyTracker:
    """Tests for DependencyTracker."""

    def test_annotate_writes_once(self, mock_store: MagicMock) -> None:
        """Should read, mutate and replace the object."""
        mock_store.get.return_value = _obj()
        tracker = DependencyTracker(mock_store)

        tracker.annotate("Plugin", "db", "org", "Plugin/web")

        written = mock_store.replace.call_args[0][1]
        assert written["metadata"]["annotations"][ANNOTATION] == "Plugin/web"

    def test_annotate_skips_unchanged(self, mock_store: MagicMock) -> None:
        """Should not write when already tracked."""
        obj = _obj("Plugin/web")
        obj["metadata"]["labels"] = {LABEL: "true"}
        mock_store.get.return_value = obj

        DependencyTracker(mock_store).annotate("Plugin", "db", "org", "Plugin/web")

        mock_store.replace.assert_not_called()

    def test_annotate_retries_on_conflict(self, mock_store: MagicMock) -> None:
        """Should re-read and retry after a conflict."""
        mock_store.get.side_effect = lambda *args: _obj()
        mock_store.replace.side_effect = [KubernetesConflictError(), {}]

        DependencyTracker(mock_store).annotate("Plugin", "db", "org", "Plugin/web")

        assert mock_store.get.call_count == 2
        assert mock_store.replace.call_count == 2

    def test_annotate_gives_up_after_retries(self, mock_store: MagicMock) -> None:
        """Should surface a persistent conflict."""
        mock_store.get.side_effect = lambda *args: _obj()
        mock_store.replace.side_effect = KubernetesConflictError()

        with pytest.raises(KubernetesConflictError):
            DependencyTracker(mock_store).annotate("Plugin", "db", "org", "Plugin/web")

        assert mock_store.replace.call_count == 5

    def test_remove_missing_object(self, mock_store: MagicMock) -> None:
        """Should treat a deleted object as cleaned up."""
        mock_store.get.side_effect = KubernetesNotFoundError(resource_type="Plugin", resource_name="db")

        DependencyTracker(mock_store).remove("Plugin", "db", "org", "Plugin/web")

        mock_store.replace.assert_not_called()

    def test_remove_untracked(self, mock_store: MagicMock) -> None:
        """Should only clean objects no longer referenced."""
        mock_store.get.side_effect = lambda kind, name, ns: {
            "kind": kind,
            "metadata": {"name": name, "annotations": {ANNOTATION: "Plugin/web"}},
        }

        DependencyTracker(mock_store).remove_untracked("org", "Plugin/web", ["Plugin/a", "Plugin/b"], ["Plugin/b"])

        assert [c[0][1]["metadata"]["name"] for c in mock_store.replace.call_args_list] == ["a"]

    def test_remove_untracked_aggregates_errors(self, mock_store: MagicMock) -> None:
        """Should attempt every object and aggregate the failures."""
        mock_store.get.side_effect = KubernetesError("boom")

        with pytest.raises(PluginOperatorError, match="Plugin/a.*Plugin/b"):
            DependencyTracker(mock_store).remove_untracked("org", "Plugin/web", ["Plugin/a", "Plugin/b"], [])

        assert mock_store.get.call_count == 2

    def test_remove_untracked_malformed_id(self, mock_store: MagicMock) -> None:
        """Should raise on a malformed previous ID before touching objects."""
        with pytest.raises(TrackingIDError):
            DependencyTracker(mock_store).remove_untracked("org", "Plugin/web", ["broken"], [])

        mock_store.get.assert_not_called()
