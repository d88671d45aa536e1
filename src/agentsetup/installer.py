"""Capability installer: the external service that registers integrations.

The reconciliation workflow only depends on the CapabilityInstaller protocol
(is_available, list_integrations, install). ClaudeCliInstaller implements it
by shelling out to the `claude mcp` commands; tests substitute a fake.

The listing parser is deliberately isolated in parse_listing(): the CLI
prints free text, so classification is heuristic and may need adjusting
when the output format changes.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .config import DEFAULT_COMMAND_TIMEOUT_SECONDS, DEFAULT_INSTALLER_COMMAND
from .models import IntegrationDescriptor

logger = logging.getLogger(__name__)

# Availability check is cheap; keep it short regardless of the command timeout
VERSION_CHECK_TIMEOUT_SECONDS = 10

# Leading identifier token of a listing line, followed by its separator
_LEADING_TOKEN = re.compile(r"^([A-Za-z0-9_-]+)\s*:")

CONNECTED_MARKERS = ("✓", "connected")
NOT_CONNECTED_MARKERS = (
    "✗",
    "failed",
    "not connected",
    "disconnected",
    "needs authentication",
)


class InstallerError(Exception):
    """Base class for installation service errors."""

    pass


class ServiceUnavailable(InstallerError):
    """Raised when the installation service cannot be run at all."""

    pass


class InstallError(InstallerError):
    """Raised when installing a single integration fails."""

    def __init__(self, identifier: str, message: str) -> None:
        super().__init__(message)
        self.identifier = identifier


@dataclass(frozen=True)
class ListedIntegration:
    """One integration line from the service's listing."""

    identifier: str
    connected: bool


class CapabilityInstaller(Protocol):
    """Narrow interface to the external installation service."""

    def is_available(self) -> bool: ...

    def list_integrations(self, env: Path) -> list[ListedIntegration]: ...

    def install(
        self,
        env: Path,
        descriptor: IntegrationDescriptor,
        parameters: Mapping[str, str],
    ) -> None: ...


def _is_connected(line: str) -> bool:
    lowered = line.lower()
    if any(marker in lowered for marker in NOT_CONNECTED_MARKERS):
        return False
    return any(re.search(rf"(?<!\w){re.escape(m)}(?!\w)", lowered) for m in CONNECTED_MARKERS)


def parse_listing(output: str) -> list[ListedIntegration]:
    """Classify listing output into integrations.

    Each line of the form "<identifier>: ..." belongs to that integration. A line
    counts as connected when it carries a success marker and no failure
    marker. Unrecognized lines are ignored; this never raises.

    Args:
        output: Raw text printed by the listing command.

    Returns:
        Integrations in listing order, first occurrence wins.
    """
    listed: dict[str, ListedIntegration] = {}
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _LEADING_TOKEN.match(line)
        if not match:
            continue
        identifier = match.group(1).lower()
        if identifier in listed:
            continue
        listed[identifier] = ListedIntegration(
            identifier=identifier,
            connected=_is_connected(line),
        )
    return list(listed.values())


def build_add_command(
    descriptor: IntegrationDescriptor,
    parameters: Mapping[str, str] | None = None,
    executable: str = DEFAULT_INSTALLER_COMMAND,
) -> list[str]:
    """Build the argument list that registers an integration.

    Parameters with empty values are omitted.
    """
    cmd = [
        executable,
        "mcp",
        "add",
        descriptor.identifier,
        "--transport",
        descriptor.transport.value,
        descriptor.url,
    ]
    for name, value in (parameters or {}).items():
        if value:
            cmd.extend(["--env", f"{name}={value}"])
    return cmd


def format_add_command(
    descriptor: IntegrationDescriptor,
    parameters: Mapping[str, str] | None = None,
    executable: str = DEFAULT_INSTALLER_COMMAND,
) -> str:
    """Render the manual install command, with placeholders for unknown values."""
    values = dict(parameters or {})
    for name in descriptor.parameters:
        if not values.get(name):
            values[name] = f"<{name.lower()}>"
    return " ".join(build_add_command(descriptor, values, executable))


class ClaudeCliInstaller:
    """CapabilityInstaller backed by the `claude` command-line tool."""

    def __init__(
        self,
        executable: str = DEFAULT_INSTALLER_COMMAND,
        timeout: int = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._executable = executable
        self._timeout = timeout

    def is_available(self) -> bool:
        """Check that the CLI is installed and answers --version."""
        if not shutil.which(self._executable):
            logger.warning(f"Installer command '{self._executable}' not found on PATH")
            return False
        try:
            result = subprocess.run(
                [self._executable, "--version"],
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=VERSION_CHECK_TIMEOUT_SECONDS,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Installer command '{self._executable}' is not usable: {e}")
            return False
        return result.returncode == 0

    def list_integrations(self, env: Path) -> list[ListedIntegration]:
        """List registered integrations for a project directory.

        A listing that runs but fails is treated as "nothing installed"
        rather than as an error. This conflates absence with query failure
        and can lead to a redundant install attempt; the install itself is
        then reported on its own.

        Raises:
            ServiceUnavailable: If the command cannot be executed at all.
        """
        try:
            result = subprocess.run(
                [self._executable, "mcp", "list"],
                cwd=env,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ServiceUnavailable(
                f"'{self._executable} mcp list' timed out after {self._timeout}s"
            ) from e
        except OSError as e:
            raise ServiceUnavailable(f"Cannot run '{self._executable}': {e}") from e

        if result.returncode != 0:
            logger.warning(
                "Could not list integrations",
                extra={"returncode": result.returncode, "stderr": result.stderr.strip()},
            )
            return []

        return parse_listing(result.stdout)

    def install(
        self,
        env: Path,
        descriptor: IntegrationDescriptor,
        parameters: Mapping[str, str],
    ) -> None:
        """Register one integration.

        Raises:
            InstallError: If the command fails, times out or cannot be run.
        """
        cmd = build_add_command(descriptor, parameters, self._executable)
        # Parameter values may be sensitive; log names only
        logger.info(
            f"Adding {descriptor.name}",
            extra={"integration": descriptor.identifier, "parameters": sorted(parameters)},
        )

        try:
            result = subprocess.run(
                cmd,
                cwd=env,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise InstallError(
                descriptor.identifier, f"Install timed out after {self._timeout}s"
            ) from e
        except OSError as e:
            raise InstallError(descriptor.identifier, f"Cannot run '{cmd[0]}': {e}") from e

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            message = f"Command failed with exit code {result.returncode}"
            if detail:
                message = f"{message}: {detail}"
            raise InstallError(descriptor.identifier, message)

        logger.info(f"Successfully added {descriptor.name}")
