"""Configuration management with validation.

Constraints are enforced at configuration load time so a reconciliation pass
never starts against a target it cannot safely write to.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .models import Transport


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_SETTINGS_PATH = Path(".claude") / "settings.local.json"
DEFAULT_INSTALLER_COMMAND = "claude"

DEFAULT_COMMAND_TIMEOUT_SECONDS = 60
MIN_COMMAND_TIMEOUT_SECONDS = 5
MAX_COMMAND_TIMEOUT_SECONDS = 600

MAX_REGISTRY_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max registry file
MAX_SETTINGS_FILE_SIZE_BYTES = 1024 * 1024

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Input validation patterns
VALID_COMMAND_PATTERN = r"^\S+$"


@dataclass(frozen=True)
class Config:
    """Setup configuration loaded from environment variables or CLI options.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-pass.
    """

    # Paths
    target_dir: Path = field(default_factory=Path.cwd)
    settings_path: Path = DEFAULT_SETTINGS_PATH
    registry_file: Path | None = None

    # Installation service
    installer_command: str = DEFAULT_INSTALLER_COMMAND
    command_timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS
    custom_transport: Transport = Transport.SSE

    # Behavior
    assume_yes: bool = False

    # Logging
    json_logs: bool = False
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.target_dir.exists():
            errors.append(f"Target directory does not exist: {self.target_dir}")
        elif not self.target_dir.is_dir():
            errors.append(f"Target path is not a directory: {self.target_dir}")

        # The settings document must stay inside the target directory
        if self.settings_path.is_absolute():
            errors.append(f"AGENTSETUP_SETTINGS_PATH must be relative: {self.settings_path}")
        elif ".." in self.settings_path.parts:
            errors.append(
                f"AGENTSETUP_SETTINGS_PATH must not contain '..': {self.settings_path}"
            )

        if self.registry_file is not None and not self.registry_file.is_file():
            errors.append(f"Registry file does not exist: {self.registry_file}")

        if not self.installer_command:
            errors.append("AGENTSETUP_INSTALLER_COMMAND is required")
        elif not re.match(VALID_COMMAND_PATTERN, self.installer_command):
            errors.append(
                f"AGENTSETUP_INSTALLER_COMMAND must not contain whitespace: "
                f"{self.installer_command!r}"
            )

        if not (
            MIN_COMMAND_TIMEOUT_SECONDS
            <= self.command_timeout_seconds
            <= MAX_COMMAND_TIMEOUT_SECONDS
        ):
            errors.append(
                f"AGENTSETUP_COMMAND_TIMEOUT must be between {MIN_COMMAND_TIMEOUT_SECONDS} "
                f"and {MAX_COMMAND_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(
                f"AGENTSETUP_LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def settings_file(self) -> Path:
        """Absolute location of the settings document for this target."""
        return self.target_dir / self.settings_path

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AGENTSETUP_TARGET_DIR: Project directory to reconcile (default: cwd)
            AGENTSETUP_SETTINGS_PATH: Settings document path relative to the target
                (default: .claude/settings.local.json)
            AGENTSETUP_REGISTRY_FILE: YAML file overriding the built-in registry
            AGENTSETUP_INSTALLER_COMMAND: Installation CLI executable (default: claude)
            AGENTSETUP_COMMAND_TIMEOUT: Timeout per CLI invocation in seconds (default: 60)
            AGENTSETUP_CUSTOM_TRANSPORT: Transport for custom integrations (default: sse)
            AGENTSETUP_ASSUME_YES: If "true", answer every prompt with its default
            AGENTSETUP_JSON_LOGS: If "true", emit JSON log lines on stderr
            AGENTSETUP_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default: WARNING)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_transport(value: str | None) -> Transport:
            if not value:
                return Transport.SSE
            try:
                return Transport(value.lower())
            except ValueError as e:
                valid = [t.value for t in Transport]
                raise ConfigurationError(
                    f"AGENTSETUP_CUSTOM_TRANSPORT must be one of {valid}: {value}"
                ) from e

        target_dir = os.environ.get("AGENTSETUP_TARGET_DIR")
        registry_file = os.environ.get("AGENTSETUP_REGISTRY_FILE")

        return cls(
            target_dir=Path(target_dir) if target_dir else Path.cwd(),
            settings_path=Path(
                os.environ.get("AGENTSETUP_SETTINGS_PATH", str(DEFAULT_SETTINGS_PATH))
            ),
            registry_file=Path(registry_file) if registry_file else None,
            installer_command=os.environ.get(
                "AGENTSETUP_INSTALLER_COMMAND", DEFAULT_INSTALLER_COMMAND
            ),
            command_timeout_seconds=get_int(
                "AGENTSETUP_COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT_SECONDS
            ),
            custom_transport=get_transport(os.environ.get("AGENTSETUP_CUSTOM_TRANSPORT")),
            assume_yes=get_bool("AGENTSETUP_ASSUME_YES", False),
            json_logs=get_bool("AGENTSETUP_JSON_LOGS", False),
            log_level=os.environ.get("AGENTSETUP_LOG_LEVEL", "WARNING").upper(),
        )
