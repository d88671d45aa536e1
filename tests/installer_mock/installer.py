"""In-memory CapabilityInstaller for workflow tests."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from agentsetup.installer import InstallError, ListedIntegration, ServiceUnavailable
from agentsetup.models import IntegrationDescriptor


@dataclass
class InstallCall:
    """One recorded install invocation."""

    env: Path
    identifier: str
    transport: str
    url: str
    parameters: dict[str, str] = field(default_factory=dict)


class FakeInstaller:
    """Fake installation service.

    Args:
        installed: Initially registered integrations mapped to their connected flag.
        available: Result of is_available().
        unavailable: Raise ServiceUnavailable from every listing.
        fail_installs: Identifiers whose install raises InstallError.
        connect_on_install: Connected flag given to newly installed integrations.
    """

    def __init__(
        self,
        *,
        installed: Mapping[str, bool] | None = None,
        available: bool = True,
        unavailable: bool = False,
        fail_installs: set[str] | None = None,
        connect_on_install: bool = True,
    ) -> None:
        self.state: dict[str, bool] = dict(installed or {})
        self.available = available
        self.unavailable = unavailable
        self.fail_installs = fail_installs or set()
        self.connect_on_install = connect_on_install
        self.list_calls: list[Path] = []
        self.install_calls: list[InstallCall] = []

    def is_available(self) -> bool:
        return self.available

    def list_integrations(self, env: Path) -> list[ListedIntegration]:
        self.list_calls.append(env)
        if self.unavailable:
            raise ServiceUnavailable("simulated listing failure")
        return [
            ListedIntegration(identifier=identifier, connected=connected)
            for identifier, connected in self.state.items()
        ]

    def install(
        self,
        env: Path,
        descriptor: IntegrationDescriptor,
        parameters: Mapping[str, str],
    ) -> None:
        self.install_calls.append(
            InstallCall(
                env=env,
                identifier=descriptor.identifier,
                transport=descriptor.transport.value,
                url=descriptor.url,
                parameters=dict(parameters),
            )
        )
        if descriptor.identifier in self.fail_installs:
            raise InstallError(descriptor.identifier, "simulated install failure")
        self.state[descriptor.identifier] = self.connect_on_install

    @property
    def installed_identifiers(self) -> list[str]:
        return [call.identifier for call in self.install_calls]
