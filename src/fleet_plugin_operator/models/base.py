"""Base models for the custom resources managed by the operator.

Resources are exchanged with the API server as plain dicts (the
``CustomObjectsApi`` representation). The models below parse those dicts with
camelCase aliases and dump them back without unset fields.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fleet_plugin_operator.constants import GROUP_VERSION
from fleet_plugin_operator.exceptions import LabelSelectorError


class CamelModel(BaseModel):
    """Base for all resource fragments using camelCase wire names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        """Dump using wire names, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class OwnerReference(CamelModel):
    """Kubernetes owner reference."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(CamelModel):
    """Subset of ObjectMeta used by the reconcilers."""

    name: str = ""
    namespace: str | None = None
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    creation_timestamp: str | None = None
    deletion_timestamp: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    finalizers: list[str] = Field(default_factory=list)

    @property
    def is_deleting(self) -> bool:
        """Whether the object has a deletion timestamp."""
        return bool(self.deletion_timestamp)


class LabelSelectorRequirement(CamelModel):
    """One ``matchExpressions`` entry of a label selector."""

    key: str
    operator: Literal["In", "NotIn", "Exists", "DoesNotExist"] | str
    values: list[str] = Field(default_factory=list)


class LabelSelector(CamelModel):
    """Kubernetes label selector."""

    match_labels: dict[str, str] = Field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = Field(default_factory=list)

    def to_selector_string(self) -> str:
        """Render the selector in the API server's query syntax.

        Raises:
            LabelSelectorError: If a requirement is malformed.
        """
        parts = [f"{key}={value}" for key, value in sorted(self.match_labels.items())]
        for req in self.match_expressions:
            if not req.key:
                raise LabelSelectorError("label selector requirement has an empty key")
            match req.operator:
                case "In" | "NotIn":
                    if not req.values:
                        raise LabelSelectorError(
                            f"values must be non-empty for operator {req.operator} on key {req.key}"
                        )
                    op = "in" if req.operator == "In" else "notin"
                    parts.append(f"{req.key} {op} ({','.join(req.values)})")
                case "Exists" | "DoesNotExist":
                    if req.values:
                        raise LabelSelectorError(
                            f"values must be empty for operator {req.operator} on key {req.key}"
                        )
                    parts.append(req.key if req.operator == "Exists" else f"!{req.key}")
                case _:
                    raise LabelSelectorError(f"{req.operator!r} is not a valid label selector operator")
        return ",".join(parts)


class KubernetesResource(CamelModel):
    """Base for a namespaced or cluster-scoped custom resource."""

    api_version: str = GROUP_VERSION
    kind: str = ""
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> Self:
        """Create a model from the dict returned by the API server."""
        return cls.model_validate(obj)

    def to_k8s_object(self) -> dict[str, Any]:
        """Dump the model to the dict accepted by the API server."""
        return self.to_dict()

    @property
    def name(self) -> str:
        """Object name."""
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """Object namespace, empty for cluster-scoped objects."""
        return self.metadata.namespace or ""

    @property
    def tracking_id(self) -> str:
        """The ``Kind/Name`` identifier of this object."""
        return f"{self.kind}/{self.metadata.name}"


def now_timestamp() -> str:
    """Current time in the RFC 3339 form used by Kubernetes."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning None for empty or invalid input."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def safe_get(obj: Any, *attrs: str, default: Any = None) -> Any:
    """Safely traverse nested attributes on kubernetes SDK objects."""
    current = obj
    for attr in attrs:
        if current is None:
            return default
        current = getattr(current, attr, None)
    return current if current is not None else default
