"""Agent setup CLI (agentsetup).

Reconciles a project's agent permissions and integrations.

Usage:
    agentsetup setup                      # Permissions, then integrations
    agentsetup permissions                # Allowlist only
    agentsetup integrations --no-custom   # Integrations only
    agentsetup status                     # Show integration status
    agentsetup rules                      # Print the required rules
    agentsetup add-rule "Bash(make *)"    # Append extra rules
"""

from __future__ import annotations

from pathlib import Path

import click

from .config import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_INSTALLER_COMMAND,
    DEFAULT_SETTINGS_PATH,
    Config,
    ConfigurationError,
)
from .installer import format_add_command
from .integrations import IntegrationReconciler, IntegrationState, ReconciliationResult
from .main import build_installer, build_prompts, run_setup, setup_logging
from .models import Registry, Transport
from .permissions import (
    PermissionOutcome,
    PermissionReconciler,
    PermissionResult,
    manual_instructions,
)
from .registry import RegistryLoadError, load_registry
from .settings_store import SettingsError

VERSION = "0.1.0"


def load_context(ctx: click.Context) -> tuple[Config, Registry]:
    """Build config and registry from the group options, once per invocation."""
    if "config" not in ctx.obj:
        options = ctx.obj["options"]
        try:
            config = Config(**options)
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        setup_logging(config.log_level, config.json_logs)
        try:
            registry = load_registry(config.registry_file)
        except RegistryLoadError as e:
            raise click.ClickException(str(e)) from e
        ctx.obj["config"] = config
        ctx.obj["registry"] = registry
    return ctx.obj["config"], ctx.obj["registry"]


# =============================================================================
# Summaries
# =============================================================================


def echo_permission_summary(result: PermissionResult, registry: Registry) -> None:
    if result.outcome is PermissionOutcome.ERROR:
        click.secho(f"\n✗ Permissions setup failed: {result.error}", fg="red")
        click.secho("You may need to add permissions manually.", fg="yellow")
        click.echo(manual_instructions(registry.rules))
    elif result.outcome is PermissionOutcome.SKIPPED:
        click.secho("\n⚠️  Permissions were not configured.", fg="yellow")
        click.echo("   Run setup again or add permissions manually.")
    elif result.outcome is PermissionOutcome.CREATED:
        click.secho("\n✓ Permissions configured successfully!", fg="green")
        click.echo(f"   {result.added} permission rules added.")
    elif result.outcome is PermissionOutcome.UPDATED:
        click.secho("\n✓ Permissions updated successfully!", fg="green")
        click.echo(f"   {result.added} new permission rules added.")
    else:
        click.secho("\n✓ Required permissions already present.", fg="green")


def _echo_manual_commands(
    identifiers: tuple[str, ...], registry: Registry, executable: str
) -> None:
    for identifier in identifiers:
        descriptor = registry.get_integration(identifier)
        if descriptor is not None:
            click.secho(f"  {format_add_command(descriptor, executable=executable)}", fg="cyan")


def echo_integration_summary(
    result: ReconciliationResult, registry: Registry, executable: str
) -> None:
    if not result.service_available:
        click.secho(
            f"\n⚠️  '{executable}' is not available. Integrations cannot be configured "
            "automatically.",
            fg="yellow",
        )
        click.echo("   You can configure them manually later using:")
        _echo_manual_commands(
            tuple(d.identifier for d in registry.integrations), registry, executable
        )
        return

    for identifier in result.already_configured:
        click.secho(f"✓ {identifier} is already configured", fg="green")

    if result.installed:
        click.secho(f"\n✓ Configured {len(result.installed)} integration(s):", fg="green")
        for identifier in result.installed:
            click.secho(f"  - {identifier}", fg="green")

    unauthenticated = [
        identifier
        for identifier, state in result.verification.items()
        if state is IntegrationState.VERIFIED_UNAUTHENTICATED
    ]
    if unauthenticated:
        click.secho(
            "\n⚠️  Not yet connected (authenticate in your agent): "
            + ", ".join(unauthenticated),
            fg="yellow",
        )

    if result.failed:
        click.secho(f"\n✗ Failed to configure {len(result.failed)} integration(s):", fg="red")
        for identifier in result.failed:
            error = result.errors.get(identifier, "unknown error")
            click.secho(f"  - {identifier}: {error}", fg="red")
        click.secho("You can configure them manually later using:", fg="yellow")
        _echo_manual_commands(result.failed, registry, executable)

    if result.skipped and not result.installed:
        click.secho("\n⚠️  No integrations were configured.", fg="yellow")
        click.secho("You can configure them later using:", fg="yellow")
        _echo_manual_commands(result.skipped, registry, executable)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=VERSION, prog_name="agentsetup")
@click.option(
    "--target-dir",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="AGENTSETUP_TARGET_DIR",
    default=".",
    help="Project directory to reconcile",
)
@click.option(
    "--settings-path",
    type=click.Path(path_type=Path),
    envvar="AGENTSETUP_SETTINGS_PATH",
    default=str(DEFAULT_SETTINGS_PATH),
    help="Settings document path, relative to the target",
)
@click.option(
    "--registry",
    "registry_file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="AGENTSETUP_REGISTRY_FILE",
    default=None,
    help="YAML registry replacing the built-in rules and integrations",
)
@click.option(
    "--installer",
    "installer_command",
    envvar="AGENTSETUP_INSTALLER_COMMAND",
    default=DEFAULT_INSTALLER_COMMAND,
    help="Installation CLI executable",
)
@click.option(
    "--timeout",
    "command_timeout_seconds",
    type=int,
    envvar="AGENTSETUP_COMMAND_TIMEOUT",
    default=DEFAULT_COMMAND_TIMEOUT_SECONDS,
    help="Timeout per installer invocation (seconds)",
)
@click.option(
    "--custom-transport",
    type=click.Choice([t.value for t in Transport]),
    envvar="AGENTSETUP_CUSTOM_TRANSPORT",
    default=Transport.SSE.value,
    help="Transport used for custom integrations",
)
@click.option(
    "--yes",
    "-y",
    "assume_yes",
    is_flag=True,
    envvar="AGENTSETUP_ASSUME_YES",
    help="Accept every default without prompting",
)
@click.option(
    "--json-logs", is_flag=True, envvar="AGENTSETUP_JSON_LOGS", help="JSON logs on stderr"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="AGENTSETUP_LOG_LEVEL",
    default="WARNING",
)
@click.pass_context
def cli(
    ctx: click.Context,
    target_dir: Path,
    settings_path: Path,
    registry_file: Path | None,
    installer_command: str,
    command_timeout_seconds: int,
    custom_transport: str,
    assume_yes: bool,
    json_logs: bool,
    log_level: str,
) -> None:
    """Agent setup CLI (agentsetup).

    Grants required agent permissions and registers required integrations,
    changing only what is missing.

    \b
    Quick Start:
        agentsetup setup          # Interactive setup of the current project
        agentsetup setup --yes    # Accept all defaults
        agentsetup status         # Show integration status
    """
    ctx.ensure_object(dict)
    ctx.obj["options"] = {
        "target_dir": target_dir,
        "settings_path": settings_path,
        "registry_file": registry_file,
        "installer_command": installer_command,
        "command_timeout_seconds": command_timeout_seconds,
        "custom_transport": Transport(custom_transport),
        "assume_yes": assume_yes,
        "json_logs": json_logs,
        "log_level": log_level.upper(),
    }


# =============================================================================
# Reconcile Commands
# =============================================================================


@cli.command()
@click.option("--with", "selected", multiple=True, help="Optional integration to configure")
@click.option("--no-custom", is_flag=True, help="Do not offer custom integrations")
@click.pass_context
def setup(ctx: click.Context, selected: tuple[str, ...], no_custom: bool) -> None:
    """Reconcile permissions, then integrations."""
    config, registry = load_context(ctx)

    click.secho("\n🔧 Permissions Setup", fg="cyan")
    result = run_setup(
        config,
        selected=list(selected) if selected else None,
        allow_custom=not no_custom,
    )

    echo_permission_summary(result.permissions, registry)
    echo_integration_summary(result.integrations, registry, config.installer_command)
    ctx.exit(result.exit_code)


@cli.command()
@click.pass_context
def permissions(ctx: click.Context) -> None:
    """Add missing required rules to the settings allowlist."""
    config, registry = load_context(ctx)

    click.secho("\n🔧 Permissions Setup", fg="cyan")
    click.echo("Agents require certain permissions to work without repeated prompts.")
    reconciler = PermissionReconciler(registry.rules, build_prompts(config), config.settings_path)
    result = reconciler.reconcile(config.target_dir)

    echo_permission_summary(result, registry)
    if not result.success:
        ctx.exit(1)


@cli.command()
@click.option("--with", "selected", multiple=True, help="Optional integration to configure")
@click.option("--no-custom", is_flag=True, help="Do not offer custom integrations")
@click.pass_context
def integrations(ctx: click.Context, selected: tuple[str, ...], no_custom: bool) -> None:
    """Register missing required integrations."""
    config, registry = load_context(ctx)

    unknown = [i for i in selected if registry.get_integration(i) is None]
    if unknown:
        raise click.BadParameter(
            f"Unknown integration(s): {', '.join(unknown)}", param_hint="--with"
        )

    click.secho("\n🔍 Checking required integrations...", fg="cyan")
    reconciler = IntegrationReconciler(
        registry,
        build_installer(config),
        build_prompts(config),
        custom_transport=config.custom_transport,
    )
    result = reconciler.reconcile(
        config.target_dir,
        selected=list(selected) if selected else None,
        allow_custom=not no_custom and not config.assume_yes,
    )

    echo_integration_summary(result, registry, config.installer_command)
    if result.failed:
        ctx.exit(1)


# =============================================================================
# Info Commands
# =============================================================================


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the status of each registry integration."""
    config, registry = load_context(ctx)

    installer = build_installer(config)
    if not installer.is_available():
        raise click.ClickException(
            f"Installer command '{config.installer_command}' not available"
        )

    reconciler = IntegrationReconciler(registry, installer, build_prompts(config))
    colors = {"absent": "red", "present-unauthenticated": "yellow", "present-ready": "green"}
    for descriptor in registry.integrations:
        state = reconciler.status(config.target_dir, descriptor.identifier)
        click.echo(f"{descriptor.identifier}: ", nl=False)
        click.secho(state.value, fg=colors[state.value])


@cli.command()
@click.pass_context
def rules(ctx: click.Context) -> None:
    """Print the required permission rules."""
    _, registry = load_context(ctx)
    for rule in registry.rules:
        click.echo(rule)


@cli.command("add-rule")
@click.argument("new_rules", nargs=-1, required=True)
@click.pass_context
def add_rule(ctx: click.Context, new_rules: tuple[str, ...]) -> None:
    """Append custom rules to the settings allowlist."""
    config, registry = load_context(ctx)

    reconciler = PermissionReconciler(registry.rules, build_prompts(config), config.settings_path)
    try:
        added = reconciler.add_rules(config.target_dir, new_rules)
    except SettingsError as e:
        raise click.ClickException(f"Failed to add custom permissions: {e}") from e

    if added:
        click.secho(f"✓ Added {added} custom permissions", fg="green")
    else:
        click.echo("All rules already present")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
