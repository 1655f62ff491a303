"""Data models for Helm operations.

Typed dataclasses for Helm releases, history entries, rendered templates,
chart tests and command results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Release states in which an upgrade must not be attempted
PENDING_STATUSES = frozenset({"pending-install", "pending-upgrade", "pending-rollback", "uninstalling"})

STATUS_DEPLOYED = "deployed"
STATUS_FAILED = "failed"


@dataclass
class HelmRelease:
    """A Helm release as reported by ``helm status --output json``."""

    name: str
    namespace: str
    revision: int
    status: str
    description: str = ""
    first_deployed: str | None = None
    last_deployed: str | None = None
    chart_name: str = ""
    chart_version: str = ""
    app_version: str = ""
    manifest: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> HelmRelease:
        """Create a HelmRelease from ``helm status --output json``."""
        info = data.get("info") or {}
        metadata = (data.get("chart") or {}).get("metadata") or {}
        return cls(
            name=str(data.get("name", "")),
            namespace=str(data.get("namespace", "")),
            revision=int(data.get("version", 0)),
            status=str(info.get("status", "")),
            description=str(info.get("description", "")),
            first_deployed=info.get("first_deployed") or None,
            last_deployed=info.get("last_deployed") or None,
            chart_name=str(metadata.get("name", "")),
            chart_version=str(metadata.get("version", "")),
            app_version=str(metadata.get("appVersion", "")),
            manifest=str(data.get("manifest", "")),
        )

    @property
    def is_deployed(self) -> bool:
        """Whether the release is in the ``deployed`` state."""
        return self.status == STATUS_DEPLOYED

    @property
    def is_pending(self) -> bool:
        """Whether an operation on the release is still in progress."""
        return self.status in PENDING_STATUSES


@dataclass
class HelmReleaseHistory:
    """A single revision entry from ``helm history``."""

    revision: int
    status: str
    chart: str
    app_version: str
    description: str
    updated: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> HelmReleaseHistory:
        """Create from ``helm history --output json`` entry."""
        return cls(
            revision=int(data.get("revision", 0)),
            status=str(data.get("status", "")),
            chart=str(data.get("chart", "")),
            app_version=str(data.get("app_version", "")),
            description=str(data.get("description", "")),
            updated=str(data.get("updated", "")),
        )


@dataclass
class HelmCommandResult:
    """Generic result from a Helm command."""

    success: bool
    stdout: str
    stderr: str = ""

    @property
    def output(self) -> str:
        """Return the primary output (stdout)."""
        return self.stdout


@dataclass
class HelmTemplateResult:
    """Result from ``helm template``."""

    rendered_yaml: str
    success: bool
    error: str | None = None


@dataclass
class HelmTestResult:
    """Result from ``helm test``.

    Attributes:
        success: Whether all test hooks passed.
        has_tests: Whether the release defines any test hooks.
        logs: Log output of the test pods (only collected on failure).
        error: Error message reported by helm on failure.
    """

    success: bool
    has_tests: bool
    logs: str = ""
    error: str | None = None
    hooks: list[str] = field(default_factory=list)
