"""Pydantic models for the setup registry with validation.

These models provide:
1. Type-safe YAML parsing of registry overrides
2. Validation at the boundary (fail fast, fail loudly)
3. The same shape for built-in and interactively supplied integrations
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

# Input validation patterns
VALID_IDENTIFIER_PATTERN = r"^[a-z0-9-]+$"
MAX_IDENTIFIER_LENGTH = 64
VALID_PARAMETER_NAME_PATTERN = r"^[A-Z][A-Z0-9_]*$"

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def is_valid_url(value: str) -> bool:
    """Check that a string is a well-formed http(s) URL."""
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError:
        return False
    return True


class Transport(str, Enum):
    """Transports understood by the installation service."""

    SSE = "sse"
    HTTP = "http"
    STDIO = "stdio"


class IntegrationStatus(str, Enum):
    """Connection state of one integration as reported by the listing."""

    ABSENT = "absent"
    PRESENT_UNAUTHENTICATED = "present-unauthenticated"
    PRESENT_READY = "present-ready"

    @property
    def is_present(self) -> bool:
        return self is not IntegrationStatus.ABSENT


# =============================================================================
# Integration Descriptors
# =============================================================================


class ParameterSpec(BaseModel):
    """One parameter the installation service needs for an integration."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    description: Annotated[str, Field(min_length=1)]
    required: bool = True
    example: str | None = None
    kind: Literal["text", "url"] = "text"


class IntegrationDescriptor(BaseModel):
    """Static definition of one external integration."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    identifier: Annotated[str, Field(min_length=1, max_length=MAX_IDENTIFIER_LENGTH)]
    name: Annotated[str, Field(min_length=1)]
    description: str = ""
    transport: Transport = Transport.SSE
    url: str
    parameters: dict[str, ParameterSpec] = Field(default_factory=dict, alias="envVars")

    # Optional integrations are only installed when the user selects them
    mandatory: bool = True

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not re.match(VALID_IDENTIFIER_PATTERN, v):
            raise ValueError(
                f"identifier must match {VALID_IDENTIFIER_PATTERN} "
                f"(lowercase letters, digits, hyphens): {v!r}"
            )
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        # Keep the string as written; AnyHttpUrl would normalize it
        if not is_valid_url(v):
            raise ValueError(f"url must be a valid http(s) URL: {v!r}")
        return v

    @field_validator("parameters")
    @classmethod
    def validate_parameter_names(cls, v: dict[str, ParameterSpec]) -> dict[str, ParameterSpec]:
        invalid = [name for name in v if not re.match(VALID_PARAMETER_NAME_PATTERN, name)]
        if invalid:
            raise ValueError(
                f"parameter names must match {VALID_PARAMETER_NAME_PATTERN}: {invalid}"
            )
        return v


# =============================================================================
# Registry
# =============================================================================


class Registry(BaseModel):
    """Canonical desired state: required access rules and integrations."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    rules: tuple[str, ...] = ()
    integrations: tuple[IntegrationDescriptor, ...] = ()

    @field_validator("rules")
    @classmethod
    def validate_rules(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        empty = [i for i, rule in enumerate(v) if not rule.strip()]
        if empty:
            raise ValueError(f"rules must not be empty strings (positions {empty})")
        seen: set[str] = set()
        duplicates: list[str] = []
        for rule in v:
            if rule in seen:
                duplicates.append(rule)
            seen.add(rule)
        if duplicates:
            raise ValueError(f"duplicate rules: {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_unique_identifiers(self) -> Registry:
        seen: set[str] = set()
        for descriptor in self.integrations:
            if descriptor.identifier in seen:
                raise ValueError(f"duplicate integration identifier: {descriptor.identifier}")
            seen.add(descriptor.identifier)
        return self

    def get_integration(self, identifier: str) -> IntegrationDescriptor | None:
        """Look up an integration by identifier."""
        for descriptor in self.integrations:
            if descriptor.identifier == identifier:
                return descriptor
        return None

    @property
    def optional_integrations(self) -> tuple[IntegrationDescriptor, ...]:
        return tuple(d for d in self.integrations if not d.mandatory)
