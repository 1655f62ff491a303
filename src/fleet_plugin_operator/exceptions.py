"""Domain exceptions raised by the reconciliation engine."""

from __future__ import annotations


class PluginOperatorError(Exception):
    """Base exception for reconciliation failures.

    Attributes:
        message: Human-readable error message, surfaced in condition messages.
        reason: Optional condition reason code associated with the failure.
    """

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        return self.message


class ExpressionError(PluginOperatorError):
    """Raised when an expression cannot be compiled or evaluated."""

    def __init__(self, message: str, expression: str | None = None) -> None:
        super().__init__(message)
        self.expression = expression


class TrackingIDError(PluginOperatorError):
    """Raised for tracker IDs that are not of the form ``Kind/Name``."""

    def __init__(self, tracking_id: str) -> None:
        super().__init__(f"invalid tracking ID {tracking_id!r}: expected format Kind/Name")
        self.tracking_id = tracking_id


class LabelSelectorError(PluginOperatorError):
    """Raised when a label selector cannot be converted to its string form."""


class ClusterAccessError(PluginOperatorError):
    """Raised when the target cluster of a plugin cannot be reached."""

    def __init__(self, message: str, cluster_name: str = "") -> None:
        super().__init__(message, reason="ClusterAccessFailed")
        self.cluster_name = cluster_name


class ClusterNotReadyError(ClusterAccessError):
    """Raised when the target cluster does not report Ready."""

    def __init__(self, cluster_name: str, detail: str | None = None) -> None:
        message = f"cluster {cluster_name} is not ready"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, cluster_name=cluster_name)


class DefinitionNotFoundError(PluginOperatorError):
    """Raised when the PluginDefinition referenced by a plugin does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} {name} not found", reason="PluginDefinitionNotFound")
        self.kind = kind
        self.name = name


class ReleaseNotFoundError(PluginOperatorError):
    """Raised when the Helm release of a plugin does not exist."""

    def __init__(self, release_name: str, namespace: str) -> None:
        super().__init__(f"release {namespace}/{release_name} not found")
        self.release_name = release_name
        self.namespace = namespace


class ReleaseNotUpgradeableError(PluginOperatorError):
    """Raised when a release is in a state that forbids an upgrade."""

    def __init__(self, release_name: str, namespace: str, status: str) -> None:
        super().__init__(f"cannot upgrade release {namespace}/{release_name} in status {status}")
        self.status = status
