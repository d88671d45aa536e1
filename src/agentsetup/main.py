"""Main entry point for project setup.

Runs both reconcilers against one target directory:
- Permissions: ensure the settings allowlist holds every required rule
- Integrations: ensure required integrations are registered and reachable

Usage:
    python -m agentsetup.main    # configured from AGENTSETUP_* env vars
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime

from .config import Config, ConfigurationError
from .installer import CapabilityInstaller, ClaudeCliInstaller
from .integrations import IntegrationReconciler, ReconciliationResult
from .permissions import PermissionOutcome, PermissionReconciler, PermissionResult
from .prompts import ClickPrompts, DefaultPrompts, PromptProvider
from .registry import RegistryLoadError, load_registry

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_FIELDS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "WARNING", json_logs: bool = False) -> None:
    """Configure logging on stderr so it never interleaves with prompts.

    Calling it again replaces the handler installed by a previous call.
    """
    handler = logging.StreamHandler(sys.stderr)
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler.set_name("agentsetup")

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == "agentsetup":
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())


@dataclass(frozen=True)
class SetupResult:
    """Combined result of a full setup run."""

    permissions: PermissionResult
    integrations: ReconciliationResult

    @property
    def exit_code(self) -> int:
        if self.permissions.outcome is PermissionOutcome.ERROR:
            return 1
        if self.integrations.failed:
            return 1
        return 0


def build_prompts(config: Config) -> PromptProvider:
    if config.assume_yes:
        return DefaultPrompts()
    return ClickPrompts()


def build_installer(config: Config) -> CapabilityInstaller:
    return ClaudeCliInstaller(config.installer_command, config.command_timeout_seconds)


def run_setup(
    config: Config,
    *,
    prompts: PromptProvider | None = None,
    installer: CapabilityInstaller | None = None,
    selected: list[str] | None = None,
    allow_custom: bool = True,
) -> SetupResult:
    """Reconcile permissions, then integrations, for the configured target.

    Raises:
        RegistryLoadError: If the configured registry file is invalid.
    """
    logger = logging.getLogger(__name__)
    registry = load_registry(config.registry_file)
    prompts = prompts or build_prompts(config)
    installer = installer or build_installer(config)

    logger.info(
        "Starting setup",
        extra={"target_dir": str(config.target_dir), "assume_yes": config.assume_yes},
    )

    permission_result = PermissionReconciler(
        registry.rules, prompts, config.settings_path
    ).reconcile(config.target_dir)

    integration_result = IntegrationReconciler(
        registry, installer, prompts, custom_transport=config.custom_transport
    ).reconcile(
        config.target_dir,
        selected=selected,
        allow_custom=allow_custom and not config.assume_yes,
    )

    return SetupResult(permissions=permission_result, integrations=integration_result)


def main() -> int:
    """Run setup configured from the environment.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level, config.json_logs)

    try:
        result = run_setup(config)
    except RegistryLoadError as e:
        logger.error("Registry error", extra={"error": str(e)})
        return 1

    logger.info(
        "Setup complete",
        extra={
            "permissions": result.permissions.outcome.value,
            "permissions_added": result.permissions.added,
            "integrations_installed": list(result.integrations.installed),
            "integrations_failed": list(result.integrations.failed),
            "service_available": result.integrations.service_available,
        },
    )
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
