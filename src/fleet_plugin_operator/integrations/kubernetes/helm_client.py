"""Helm CLI wrapper for release management.

Wraps the helm binary via subprocess for template, install, upgrade,
rollback, uninstall, status, history and test operations. A client is bound
to one kubeconfig so that releases on remote clusters can be managed from the
control plane.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import structlog

from fleet_plugin_operator.integrations.kubernetes.exceptions import KubernetesError
from fleet_plugin_operator.integrations.kubernetes.models.helm import (
    HelmCommandResult,
    HelmRelease,
    HelmReleaseHistory,
    HelmTemplateResult,
    HelmTestResult,
)

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HELM_TIMEOUT_SECONDS = 300
VERSION_TIMEOUT_SECONDS = 10
SHORT_TIMEOUT_SECONDS = 30

RELEASE_NOT_FOUND_MARKER = "release: not found"
NO_TEST_SUITE_MARKER = "None"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HelmError(KubernetesError):
    """Base exception for Helm operations."""

    def __init__(
        self,
        message: str,
        stderr: str | None = None,
        stdout: str | None = None,
    ) -> None:
        super().__init__(message=message)
        self.stderr = stderr
        self.stdout = stdout


class HelmBinaryNotFoundError(HelmError):
    """Raised when helm binary is not found in PATH."""

    def __init__(self) -> None:
        super().__init__(
            message=(
                "helm binary not found in PATH. Install from: https://helm.sh/docs/intro/install/"
            ),
        )


class HelmCommandError(HelmError):
    """Raised when a helm command fails."""

    @property
    def is_release_not_found(self) -> bool:
        """Whether helm reported that the release does not exist."""
        return RELEASE_NOT_FOUND_MARKER in (self.stderr or "")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HelmClient:
    """Client for interacting with the Helm CLI.

    Wraps helm binary execution and provides typed results.
    """

    def __init__(
        self,
        binary_path: str | None = None,
        *,
        kubeconfig: str | None = None,
        timeout: int = HELM_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize Helm client.

        Args:
            binary_path: Optional explicit path to helm binary.
                If None, searches PATH.
            kubeconfig: Kubeconfig file passed to every command. If None,
                helm uses its own defaults (in-cluster or ~/.kube/config).
            timeout: Subprocess timeout for mutating commands in seconds.

        Raises:
            HelmBinaryNotFoundError: If binary not found.
        """
        self._binary = self._find_binary(binary_path)
        self._kubeconfig = kubeconfig
        self._timeout = timeout
        self._log = logger.bind(binary=self._binary)
        self._log.debug("helm_client_initialized", kubeconfig=kubeconfig)

    @staticmethod
    def _find_binary(binary_path: str | None) -> str:
        """Locate helm binary.

        Raises:
            HelmBinaryNotFoundError: If not found.
        """
        if binary_path:
            path = Path(binary_path)
            if not path.exists():
                raise HelmBinaryNotFoundError()
            return str(path.resolve())

        found = shutil.which("helm")
        if not found:
            raise HelmBinaryNotFoundError()

        return found

    def with_kubeconfig(self, kubeconfig: str | None) -> HelmClient:
        """Return a client using the same binary against another kubeconfig."""
        return HelmClient(self._binary, kubeconfig=kubeconfig, timeout=self._timeout)

    def _run(
        self,
        args: list[str],
        *,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a helm command.

        Args:
            args: Command arguments (without the ``helm`` prefix).
            timeout: Timeout in seconds. Defaults to the client timeout.

        Returns:
            CompletedProcess result.

        Raises:
            HelmCommandError: On non-zero exit.
            HelmError: On timeout.
        """
        cmd = [self._binary, *args]
        if self._kubeconfig:
            cmd.extend(["--kubeconfig", self._kubeconfig])
        timeout = timeout or self._timeout
        self._log.debug("running_helm_command", args=args)

        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            raise HelmCommandError(
                message=f"Helm command failed: {e.stderr.strip() if e.stderr else f'exit code {e.returncode}'}",
                stderr=e.stderr,
                stdout=e.stdout,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise HelmError(
                message=f"Helm command timed out after {timeout}s",
            ) from e

    # -----------------------------------------------------------------------
    # Version
    # -----------------------------------------------------------------------

    def get_version(self) -> str:
        """Get helm version string without build metadata."""
        result = self._run(["version", "--short"], timeout=VERSION_TIMEOUT_SECONDS)
        version = result.stdout.strip()
        if "+" in version:
            version = version.split("+")[0]
        return version

    # -----------------------------------------------------------------------
    # Rendering
    # -----------------------------------------------------------------------

    def template(
        self,
        release_name: str,
        chart: str,
        *,
        namespace: str | None = None,
        values_files: list[str] | None = None,
        version: str | None = None,
        repo: str | None = None,
    ) -> HelmTemplateResult:
        """Render chart templates locally.

        Failures are reported through the result rather than raised.
        """
        args = ["template", release_name, chart, "--include-crds"]
        args.extend(
            self._build_common_args(
                namespace=namespace,
                values_files=values_files,
                version=version,
                repo=repo,
            )
        )

        try:
            result = self._run(args)
            return HelmTemplateResult(rendered_yaml=result.stdout, success=True)
        except HelmCommandError as e:
            return HelmTemplateResult(rendered_yaml="", success=False, error=e.message)

    # -----------------------------------------------------------------------
    # Release management
    # -----------------------------------------------------------------------

    def install(
        self,
        release_name: str,
        chart: str,
        *,
        namespace: str | None = None,
        values_files: list[str] | None = None,
        version: str | None = None,
        repo: str | None = None,
        description: str | None = None,
        create_namespace: bool = True,
        timeout: str | None = None,
    ) -> HelmCommandResult:
        """Install a Helm chart.

        Args:
            release_name: Name for the release.
            chart: Chart name, path or OCI reference.
            namespace: Target Kubernetes namespace.
            values_files: Paths to values YAML files.
            version: Chart version constraint.
            repo: Chart repository URL.
            description: Custom release description.
            create_namespace: Create namespace if it doesn't exist.
            timeout: Timeout for hooks (e.g., ``5m0s``).

        Returns:
            Command result.
        """
        args = ["install", release_name, chart]
        args.extend(
            self._build_common_args(
                namespace=namespace,
                values_files=values_files,
                version=version,
                repo=repo,
                timeout=timeout,
            )
        )
        if description:
            args.extend(["--description", description])
        if create_namespace:
            args.append("--create-namespace")

        result = self._run(args)
        self._log.info("helm_install_success", release=release_name, chart=chart)
        return HelmCommandResult(success=True, stdout=result.stdout, stderr=result.stderr)

    def upgrade(
        self,
        release_name: str,
        chart: str,
        *,
        namespace: str | None = None,
        values_files: list[str] | None = None,
        version: str | None = None,
        repo: str | None = None,
        description: str | None = None,
        max_history: int | None = None,
        reset_values: bool = True,
        timeout: str | None = None,
    ) -> HelmCommandResult:
        """Upgrade an existing Helm release.

        Args:
            release_name: Name of the release.
            chart: Chart reference.
            namespace: Target namespace.
            values_files: Paths to values YAML files.
            version: Chart version constraint.
            repo: Chart repository URL.
            description: Custom release description.
            max_history: Revisions to keep in the release history.
            reset_values: Reset values to chart defaults before applying values.
            timeout: Timeout for hooks.

        Returns:
            Command result.
        """
        args = ["upgrade", release_name, chart]
        args.extend(
            self._build_common_args(
                namespace=namespace,
                values_files=values_files,
                version=version,
                repo=repo,
                timeout=timeout,
            )
        )
        if description:
            args.extend(["--description", description])
        if max_history is not None:
            args.extend(["--history-max", str(max_history)])
        if reset_values:
            args.append("--reset-values")

        result = self._run(args)
        self._log.info("helm_upgrade_success", release=release_name, chart=chart)
        return HelmCommandResult(success=True, stdout=result.stdout, stderr=result.stderr)

    def rollback(
        self,
        release_name: str,
        revision: int,
        *,
        namespace: str | None = None,
        wait: bool = True,
        no_hooks: bool = True,
        timeout: str | None = None,
    ) -> HelmCommandResult:
        """Roll a release back to a previous revision."""
        args = ["rollback", release_name, str(revision)]
        if namespace:
            args.extend(["--namespace", namespace])
        if wait:
            args.append("--wait")
        if no_hooks:
            args.append("--no-hooks")
        if timeout:
            args.extend(["--timeout", timeout])

        result = self._run(args)
        self._log.info("helm_rollback_success", release=release_name, revision=revision)
        return HelmCommandResult(success=True, stdout=result.stdout, stderr=result.stderr)

    def uninstall(
        self,
        release_name: str,
        *,
        namespace: str | None = None,
        keep_history: bool = False,
        timeout: str | None = None,
    ) -> HelmCommandResult:
        """Uninstall a release."""
        args = ["uninstall", release_name]
        if namespace:
            args.extend(["--namespace", namespace])
        if keep_history:
            args.append("--keep-history")
        if timeout:
            args.extend(["--timeout", timeout])

        result = self._run(args)
        self._log.info("helm_uninstall_success", release=release_name)
        return HelmCommandResult(success=True, stdout=result.stdout, stderr=result.stderr)

    # -----------------------------------------------------------------------
    # Inspection
    # -----------------------------------------------------------------------

    def status(
        self,
        release_name: str,
        *,
        namespace: str | None = None,
    ) -> HelmRelease:
        """Get the latest revision of a release including its manifest.

        Raises:
            HelmCommandError: If the release does not exist or helm fails.
        """
        args = ["status", release_name, "--output", "json"]
        if namespace:
            args.extend(["--namespace", namespace])

        result = self._run(args, timeout=SHORT_TIMEOUT_SECONDS)
        release = HelmRelease.from_json(json.loads(result.stdout))
        if not release.manifest:
            release.manifest = self.get_manifest(release_name, namespace=namespace)
        return release

    def get_manifest(self, release_name: str, *, namespace: str | None = None) -> str:
        """Get the rendered manifest recorded for the latest release revision."""
        args = ["get", "manifest", release_name]
        if namespace:
            args.extend(["--namespace", namespace])
        return self._run(args, timeout=SHORT_TIMEOUT_SECONDS).stdout

    def history(
        self,
        release_name: str,
        *,
        namespace: str | None = None,
        max_revisions: int | None = None,
    ) -> list[HelmReleaseHistory]:
        """Get release history."""
        args = ["history", release_name, "--output", "json"]
        if namespace:
            args.extend(["--namespace", namespace])
        if max_revisions is not None:
            args.extend(["--max", str(max_revisions)])

        result = self._run(args, timeout=SHORT_TIMEOUT_SECONDS)
        data = json.loads(result.stdout) if result.stdout.strip() else []
        return [HelmReleaseHistory.from_json(entry) for entry in data]

    def test(
        self,
        release_name: str,
        *,
        namespace: str | None = None,
        timeout: str | None = None,
    ) -> HelmTestResult:
        """Run the test hooks of a release and collect pod logs.

        Test failures are reported through the result rather than raised.
        """
        args = ["test", release_name, "--logs"]
        if namespace:
            args.extend(["--namespace", namespace])
        if timeout:
            args.extend(["--timeout", timeout])

        try:
            result = self._run(args)
        except HelmCommandError as e:
            output = e.stdout or ""
            return HelmTestResult(
                success=False,
                has_tests=True,
                logs=_extract_pod_logs(output),
                error=e.message,
                hooks=_parse_test_suites(output),
            )

        hooks = _parse_test_suites(result.stdout)
        self._log.debug("helm_test_finished", release=release_name, hooks=hooks)
        return HelmTestResult(success=True, has_tests=bool(hooks), hooks=hooks)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _build_common_args(
        *,
        namespace: str | None = None,
        values_files: list[str] | None = None,
        version: str | None = None,
        repo: str | None = None,
        timeout: str | None = None,
    ) -> list[str]:
        """Build common Helm CLI arguments."""
        args: list[str] = []
        if namespace:
            args.extend(["--namespace", namespace])
        if version:
            args.extend(["--version", version])
        if repo:
            args.extend(["--repo", repo])
        if values_files:
            for f in values_files:
                args.extend(["--values", f])
        if timeout:
            args.extend(["--timeout", timeout])
        return args


def _parse_test_suites(output: str) -> list[str]:
    """Return the test hook names listed in ``helm test`` output."""
    hooks: list[str] = []
    for line in output.splitlines():
        if line.startswith("TEST SUITE:"):
            name = line.split(":", 1)[1].strip()
            if name and name != NO_TEST_SUITE_MARKER:
                hooks.append(name)
    return hooks


def _extract_pod_logs(output: str) -> str:
    """Return everything after the first ``POD LOGS:`` header."""
    marker = "POD LOGS:"
    index = output.find(marker)
    if index == -1:
        return output
    return output[index:]
