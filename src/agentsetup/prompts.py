"""Prompt providers for interactive decisions.

Reconcilers only consume resolved answers through the PromptProvider
protocol. ClickPrompts asks a human on the terminal; DefaultPrompts answers
every question with its default for --yes and unattended runs.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from typing import Protocol

import click

from .models import (
    MAX_IDENTIFIER_LENGTH,
    VALID_IDENTIFIER_PATTERN,
    ParameterSpec,
    is_valid_url,
)

logger = logging.getLogger(__name__)

Validator = Callable[[str], str]


class InputValidationError(ValueError):
    """Raised when a user-supplied value fails validation."""

    pass


class PromptProvider(Protocol):
    """Capability used by reconcilers to ask the user for decisions."""

    def confirm(self, message: str, *, default: bool = True) -> bool: ...

    def text(
        self,
        message: str,
        *,
        default: str | None = None,
        validate: Validator | None = None,
    ) -> str: ...

    def multiselect(
        self,
        message: str,
        choices: Sequence[str],
        *,
        defaults: Sequence[str] = (),
    ) -> list[str]: ...


# =============================================================================
# Validators
# =============================================================================
# A validator returns the cleaned value or raises InputValidationError.


def required_value(value: str) -> str:
    value = value.strip()
    if not value:
        raise InputValidationError("This value is required")
    return value


def url_value(value: str) -> str:
    value = value.strip()
    if value and not is_valid_url(value):
        raise InputValidationError(
            "Please enter a valid URL (e.g., https://yourcompany.atlassian.net)"
        )
    return value


def identifier_value(value: str) -> str:
    value = required_value(value)
    if not re.match(VALID_IDENTIFIER_PATTERN, value):
        raise InputValidationError(
            "Use lowercase letters, digits and hyphens only (e.g., my-server)"
        )
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InputValidationError(f"Use at most {MAX_IDENTIFIER_LENGTH} characters")
    return value


def chain(*validators: Validator) -> Validator:
    """Compose validators left to right."""

    def run(value: str) -> str:
        for validator in validators:
            value = validator(value)
        return value

    return run


def parameter_validator(name: str, spec: ParameterSpec) -> Validator:
    """Build the validator for one integration parameter.

    Required parameters reject empty input; URL-shaped parameters (declared
    kind "url" or named *_URL) reject malformed URLs.
    """
    validators: list[Validator] = []
    if spec.required:
        validators.append(required_value)
    if spec.kind == "url" or name.endswith("_URL"):
        validators.append(url_value)
    if not validators:
        return str.strip
    return chain(*validators)


# =============================================================================
# Providers
# =============================================================================


class ClickPrompts:
    """Interactive prompts on the terminal via click.

    Validation failures are raised to click as BadParameter, which makes
    click print the message and ask again.
    """

    def confirm(self, message: str, *, default: bool = True) -> bool:
        return click.confirm(message, default=default)

    def text(
        self,
        message: str,
        *,
        default: str | None = None,
        validate: Validator | None = None,
    ) -> str:
        def value_proc(value: str) -> str:
            if validate is None:
                return value
            try:
                return validate(value)
            except InputValidationError as e:
                raise click.BadParameter(str(e)) from e

        # Empty input falls back to the default, which then runs through value_proc
        return click.prompt(
            message,
            default=default or "",
            value_proc=value_proc,
            show_default=bool(default),
        )

    def multiselect(
        self,
        message: str,
        choices: Sequence[str],
        *,
        defaults: Sequence[str] = (),
    ) -> list[str]:
        if not choices:
            return []

        click.echo(message)
        for index, choice in enumerate(choices, start=1):
            marker = "*" if choice in defaults else " "
            click.echo(f"  [{marker}] {index}. {choice}")

        def value_proc(value: str) -> list[str]:
            picked: list[str] = []
            for token in (t.strip() for t in value.split(",")):
                if not token:
                    continue
                if token.isdigit() and 1 <= int(token) <= len(choices):
                    choice = choices[int(token) - 1]
                elif token in choices:
                    choice = token
                else:
                    raise click.BadParameter(f"Unknown choice: {token}")
                if choice not in picked:
                    picked.append(choice)
            return picked

        return click.prompt(
            "Select (comma-separated numbers or names, blank for none)",
            default=",".join(defaults),
            value_proc=value_proc,
            show_default=bool(defaults),
        )


class DefaultPrompts:
    """Non-interactive prompts that accept every default.

    A text prompt whose default fails validation cannot be re-asked, so the
    InputValidationError propagates to the caller.
    """

    def confirm(self, message: str, *, default: bool = True) -> bool:
        logger.info(f"Auto-answering '{message}' with {'yes' if default else 'no'}")
        return default

    def text(
        self,
        message: str,
        *,
        default: str | None = None,
        validate: Validator | None = None,
    ) -> str:
        value = default or ""
        if validate is not None:
            value = validate(value)
        return value

    def multiselect(
        self,
        message: str,
        choices: Sequence[str],
        *,
        defaults: Sequence[str] = (),
    ) -> list[str]:
        return [choice for choice in choices if choice in defaults]
