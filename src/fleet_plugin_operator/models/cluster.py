"""Cluster resource model."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from fleet_plugin_operator.constants import ANNOTATION_DELETION_SCHEDULE, CLUSTER_KIND, LABEL_METADATA_PREFIX
from fleet_plugin_operator.models.base import CamelModel, KubernetesResource, parse_timestamp
from fleet_plugin_operator.models.conditions import ConditionType, StatusConditions


class ClusterStatus(CamelModel):
    status_conditions: StatusConditions = Field(default_factory=StatusConditions)


class Cluster(KubernetesResource):
    """A remote cluster registered with the control plane."""

    kind: str = CLUSTER_KIND
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def is_ready(self) -> bool:
        return self.status.status_conditions.is_true(ConditionType.READY)

    @property
    def metadata_labels(self) -> dict[str, str]:
        """Labels carrying the metadata prefix, keyed without the prefix."""
        return {
            key.removeprefix(LABEL_METADATA_PREFIX): value
            for key, value in self.metadata.labels.items()
            if key.startswith(LABEL_METADATA_PREFIX)
        }

    def deletion_schedule(self) -> datetime | None:
        """Time at which the cluster is scheduled to be deleted, if any."""
        return parse_timestamp(self.metadata.annotations.get(ANNOTATION_DELETION_SCHEDULE))
