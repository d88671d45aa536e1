"""Integration reconciler: ensure required integrations are registered.

Each integration runs through a small state machine, strictly one at a time:

    unchecked -> checked -> already_present                -> verified_*
                         -> needs_install -> installed     -> verified_*
                                          -> failed
                         -> skipped

Discovery, decisions and installs go through injected collaborators (a
CapabilityInstaller and a PromptProvider) so the workflow can be driven by a
human or by a scripted test harness.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from pydantic import ValidationError

from .installer import CapabilityInstaller, InstallError, ListedIntegration, ServiceUnavailable
from .models import (
    VALID_PARAMETER_NAME_PATTERN,
    IntegrationDescriptor,
    IntegrationStatus,
    ParameterSpec,
    Registry,
    Transport,
)
from .prompts import (
    InputValidationError,
    PromptProvider,
    chain,
    identifier_value,
    parameter_validator,
    required_value,
    url_value,
)

logger = logging.getLogger(__name__)


class IntegrationState(str, Enum):
    """Per-integration workflow states."""

    UNCHECKED = "unchecked"
    CHECKED = "checked"
    ALREADY_PRESENT = "already_present"
    NEEDS_INSTALL = "needs_install"
    SKIPPED = "skipped"
    INSTALLED = "installed"
    FAILED = "failed"
    VERIFIED_READY = "verified_ready"
    VERIFIED_UNAUTHENTICATED = "verified_unauthenticated"


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one integration reconciliation pass.

    Every identifier in `checked` appears in exactly one of `installed`,
    `failed`, `skipped` or `already_configured`.
    """

    checked: tuple[str, ...] = ()
    installed: tuple[str, ...] = ()
    already_configured: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    verification: Mapping[str, IntegrationState] = field(
        default_factory=lambda: MappingProxyType({})
    )
    errors: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    service_available: bool = True

    @property
    def success(self) -> bool:
        return self.service_available and not self.failed

    @property
    def needs_attention(self) -> bool:
        return bool(self.failed or self.skipped)


class _ResultBuilder:
    """Mutable accumulator behind a ReconciliationResult."""

    def __init__(self) -> None:
        self.checked: list[str] = []
        self.buckets: dict[IntegrationState, list[str]] = {
            IntegrationState.INSTALLED: [],
            IntegrationState.ALREADY_PRESENT: [],
            IntegrationState.SKIPPED: [],
            IntegrationState.FAILED: [],
        }
        self.verification: dict[str, IntegrationState] = {}
        self.errors: dict[str, str] = {}

    def record(self, identifier: str, state: IntegrationState) -> None:
        self.buckets[state].append(identifier)

    def build(self) -> ReconciliationResult:
        return ReconciliationResult(
            checked=tuple(self.checked),
            installed=tuple(self.buckets[IntegrationState.INSTALLED]),
            already_configured=tuple(self.buckets[IntegrationState.ALREADY_PRESENT]),
            skipped=tuple(self.buckets[IntegrationState.SKIPPED]),
            failed=tuple(self.buckets[IntegrationState.FAILED]),
            verification=MappingProxyType(dict(self.verification)),
            errors=MappingProxyType(dict(self.errors)),
        )


def classify(identifier: str, listed: Iterable[ListedIntegration]) -> IntegrationStatus:
    """Derive the status of one integration from a listing."""
    for entry in listed:
        if entry.identifier == identifier:
            if entry.connected:
                return IntegrationStatus.PRESENT_READY
            return IntegrationStatus.PRESENT_UNAUTHENTICATED
    return IntegrationStatus.ABSENT


def decide(
    status: IntegrationStatus,
    *,
    mandatory: bool,
    selected: bool,
) -> IntegrationState:
    """Next state for a checked integration."""
    if status.is_present:
        return IntegrationState.ALREADY_PRESENT
    if mandatory or selected:
        return IntegrationState.NEEDS_INSTALL
    return IntegrationState.SKIPPED


def verification_state(status: IntegrationStatus) -> IntegrationState:
    if status is IntegrationStatus.PRESENT_READY:
        return IntegrationState.VERIFIED_READY
    return IntegrationState.VERIFIED_UNAUTHENTICATED


class IntegrationReconciler:
    """Reconciles the registry's integrations against a project environment."""

    def __init__(
        self,
        registry: Registry,
        installer: CapabilityInstaller,
        prompts: PromptProvider,
        *,
        custom_transport: Transport = Transport.SSE,
    ) -> None:
        self._registry = registry
        self._installer = installer
        self._prompts = prompts
        self._custom_transport = custom_transport

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def list_integrations(self, env: Path) -> list[ListedIntegration]:
        """Integrations currently registered for the environment.

        Raises:
            ServiceUnavailable: If the installation service cannot run.
        """
        return self._installer.list_integrations(env)

    def status(self, env: Path, identifier: str) -> IntegrationStatus:
        """Current status of one integration.

        A service failure during the check reads as absent.
        """
        try:
            listed = self.list_integrations(env)
        except ServiceUnavailable as e:
            logger.warning(
                f"Status check for '{identifier}' failed, treating as absent: {e}",
                extra={"integration": identifier},
            )
            return IntegrationStatus.ABSENT
        return classify(identifier, listed)

    # -------------------------------------------------------------------------
    # Provisioning workflow
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        env: Path,
        *,
        selected: Iterable[str] | None = None,
        allow_custom: bool = True,
    ) -> ReconciliationResult:
        """Run one reconciliation pass.

        Args:
            env: Project directory the integrations are registered for.
            selected: Optional integrations to install. None asks the user.
            allow_custom: Offer to add user-defined integrations at the end.

        Returns:
            The frozen result of the pass. When the installation service is
            unavailable nothing is visited and service_available is False.
        """
        if not self._service_reachable(env):
            logger.warning("Installation service unavailable, skipping integration setup")
            return ReconciliationResult(service_available=False)

        builder = _ResultBuilder()
        chosen = self._select_optional(selected)

        for descriptor in self._registry.integrations:
            self._process(env, descriptor, builder, selected=descriptor.identifier in chosen)

        if allow_custom:
            known = {d.identifier for d in self._registry.integrations}
            while self._prompts.confirm("Add a custom integration?", default=False):
                try:
                    custom = self._prompt_custom(known)
                except InputValidationError as e:
                    logger.error(f"Custom integration rejected: {e}")
                    continue
                known.add(custom.identifier)
                self._process(env, custom, builder, custom=True)

        result = builder.build()
        logger.info(
            "Integration reconciliation complete",
            extra={
                "checked": len(result.checked),
                "installed": len(result.installed),
                "already_configured": len(result.already_configured),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
            },
        )
        return result

    def _service_reachable(self, env: Path) -> bool:
        if not self._installer.is_available():
            return False
        try:
            self._installer.list_integrations(env)
        except ServiceUnavailable as e:
            logger.warning(f"Installation service listing failed: {e}")
            return False
        return True

    def _select_optional(self, selected: Iterable[str] | None) -> set[str]:
        if selected is not None:
            return set(selected)
        optional = [d.identifier for d in self._registry.optional_integrations]
        if not optional:
            return set()
        return set(
            self._prompts.multiselect("Select optional integrations to configure:", optional)
        )

    def _process(
        self,
        env: Path,
        descriptor: IntegrationDescriptor,
        builder: _ResultBuilder,
        *,
        selected: bool = False,
        custom: bool = False,
    ) -> None:
        """Drive one integration from unchecked to a terminal state."""
        identifier = descriptor.identifier
        status = self.status(env, identifier)
        builder.checked.append(identifier)
        logger.debug(f"{identifier}: {status.value}", extra={"integration": identifier})

        state = decide(status, mandatory=descriptor.mandatory or custom, selected=selected)

        # Registry integrations ask before installing; custom ones were just requested
        if state is IntegrationState.NEEDS_INSTALL and not custom:
            if not self._prompts.confirm(f"Would you like to configure {descriptor.name} now?"):
                state = IntegrationState.SKIPPED

        if state is IntegrationState.NEEDS_INSTALL:
            state = self._install(env, descriptor, builder)

        builder.record(identifier, state)

        if state in (IntegrationState.ALREADY_PRESENT, IntegrationState.INSTALLED):
            builder.verification[identifier] = self._verify(env, identifier)

    def _install(
        self,
        env: Path,
        descriptor: IntegrationDescriptor,
        builder: _ResultBuilder,
    ) -> IntegrationState:
        identifier = descriptor.identifier
        try:
            parameters = self.collect_parameters(descriptor)
            self._installer.install(env, descriptor, parameters)
        except (InstallError, InputValidationError) as e:
            logger.error(
                f"Failed to add {descriptor.name}: {e}",
                extra={"integration": identifier},
            )
            builder.errors[identifier] = str(e)
            return IntegrationState.FAILED
        return IntegrationState.INSTALLED

    def _verify(self, env: Path, identifier: str) -> IntegrationState:
        status = self.status(env, identifier)
        if not status.is_present:
            logger.warning(
                f"'{identifier}' is not listed after setup",
                extra={"integration": identifier},
            )
        return verification_state(status)

    # -------------------------------------------------------------------------
    # Prompting
    # -------------------------------------------------------------------------

    def collect_parameters(self, descriptor: IntegrationDescriptor) -> dict[str, str]:
        """Ask for every parameter of an integration, validating each answer.

        Empty optional values are dropped.
        """
        values: dict[str, str] = {}
        for name, spec in descriptor.parameters.items():
            value = self._prompts.text(
                f"Enter {spec.description}:",
                default=spec.example,
                validate=parameter_validator(name, spec),
            )
            if value:
                values[name] = value
        return values

    def _prompt_custom(self, known: set[str]) -> IntegrationDescriptor:
        def unique_identifier(value: str) -> str:
            if value in known:
                raise InputValidationError(f"An integration named '{value}' already exists")
            return value

        def parameter_names(value: str) -> str:
            names = [n.strip() for n in value.split(",") if n.strip()]
            invalid = [n for n in names if not re.match(VALID_PARAMETER_NAME_PATTERN, n)]
            if invalid:
                raise InputValidationError(
                    f"Parameter names must be UPPER_SNAKE_CASE: {', '.join(invalid)}"
                )
            return ",".join(names)

        identifier = self._prompts.text(
            "Integration identifier:",
            validate=chain(identifier_value, unique_identifier),
        )
        name = self._prompts.text("Display name:", default=identifier, validate=required_value)
        url = self._prompts.text("Endpoint URL:", validate=chain(required_value, url_value))
        names = self._prompts.text(
            "Required parameter names (comma-separated, blank for none):",
            validate=parameter_names,
        )

        try:
            return IntegrationDescriptor(
                identifier=identifier,
                name=name,
                transport=self._custom_transport,
                url=url,
                parameters={
                    param: ParameterSpec(description=param, required=True)
                    for param in names.split(",")
                    if param
                },
            )
        except ValidationError as e:
            raise InputValidationError(str(e)) from e
