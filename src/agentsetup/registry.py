"""Canonical registry of required access rules and integrations.

The built-in registry is plain data injected into the reconcilers at
construction; a YAML file with the same shape can replace it.

SECURITY: Registry files are size-checked before reading to avoid loading
arbitrarily large documents.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_REGISTRY_FILE_SIZE_BYTES
from .models import IntegrationDescriptor, ParameterSpec, Registry, Transport

logger = logging.getLogger(__name__)


class RegistryLoadError(Exception):
    """Raised when a registry file cannot be loaded or fails validation."""

    pass


# =============================================================================
# Built-in Registry
# =============================================================================
# Rules are grouped by the tooling they unlock. Order matters: new entries are
# appended to a user's allowlist in exactly this order.

DEFAULT_RULES: tuple[str, ...] = (
    # Atlassian MCP tools
    "mcp__atlassian__getConfluencePage",
    "mcp__atlassian__getConfluencePageDescendants",
    "mcp__atlassian__getJiraIssue",
    "mcp__atlassian__searchJiraIssuesUsingJql",
    "mcp__atlassian__fetch",
    "mcp__atlassian__addCommentToJiraIssue",
    "WebFetch(domain:stellaint.atlassian.net)",
    # File operations for markdown files
    "Write(bmad-docs/**)",
    "Write(**/*.md)",
    "Edit(bmad-docs/**)",
    "Edit(**/*.md)",
    # Directory operations (Unix)
    "Bash(mkdir -p bmad-docs/**)",
    "Bash(mkdir -p **/bmad-docs/**)",
    "Bash(mkdir bmad-docs/**)",
    "Bash(mkdir **/bmad-docs/**)",
    "Bash(rm -rf bmad-docs/architecture)",
    "Bash(rm -rf bmad-docs/architecture/)",
    "Bash(rm -rf **/bmad-docs/architecture)",
    "Bash(rm -rf **/bmad-docs/architecture/)",
    "Bash(rm bmad-docs/temporary/*.md)",
    "Bash(rm **/bmad-docs/temporary/*.md)",
    # Directory operations (Windows)
    "Bash(if exist *bmad-docs* rmdir /s /q *bmad-docs*)",
    r"Bash(if exist *bmad-docs\architecture* rmdir /s /q *bmad-docs\architecture*)",
    "Bash(mkdir *bmad-docs*)",
    # Listing and existence checks (Unix)
    "Bash(ls bmad-docs/**)",
    "Bash(ls **/bmad-docs/**)",
    "Bash(test -f bmad-docs/**)",
    "Bash(test -f **/bmad-docs/**)",
    "Bash(test -d bmad-docs/**)",
    "Bash(test -d **/bmad-docs/**)",
    "Bash([ -f bmad-docs/** ])",
    "Bash([ -d bmad-docs/** ])",
    # Listing (Windows)
    "Bash(dir bmad-docs/**)",
    "Bash(dir **/bmad-docs/**)",
    "Bash(dir *bmad-docs*)",
)

DEFAULT_INTEGRATIONS: tuple[IntegrationDescriptor, ...] = (
    IntegrationDescriptor(
        identifier="atlassian",
        name="Atlassian MCP Server",
        description=(
            "Required for JIRA integration "
            "(retrieve-ticket-information, comment-plan commands)"
        ),
        transport=Transport.SSE,
        url="https://mcp.atlassian.com/v1/sse",
        parameters={
            "JIRA_BASE_URL": ParameterSpec(
                description="Your JIRA instance URL (e.g., https://yourcompany.atlassian.net)",
                required=True,
                example="https://yourcompany.atlassian.net",
                kind="url",
            ),
        },
    ),
)

DEFAULT_REGISTRY = Registry(rules=DEFAULT_RULES, integrations=DEFAULT_INTEGRATIONS)


def load_registry(path: Path | None = None) -> Registry:
    """Load and validate a registry from YAML.

    Args:
        path: Registry file, or None for the built-in registry.

    Returns:
        Validated registry instance.

    Raises:
        RegistryLoadError: If the file cannot be loaded or fails validation.
    """
    if path is None:
        return DEFAULT_REGISTRY

    if not path.exists():
        raise RegistryLoadError(f"Registry file not found: {path}")

    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise RegistryLoadError(f"Cannot stat registry file {path}: {e}") from e

    if file_size > MAX_REGISTRY_FILE_SIZE_BYTES:
        raise RegistryLoadError(
            f"Registry file {path} exceeds maximum size of "
            f"{MAX_REGISTRY_FILE_SIZE_BYTES} bytes ({file_size} bytes)"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RegistryLoadError(f"Cannot read registry file {path}: {e}") from e

    try:
        data: Any = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise RegistryLoadError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RegistryLoadError(f"Registry file {path} must contain a mapping at the top level")

    try:
        registry = Registry.model_validate(data)
    except ValidationError as e:
        raise RegistryLoadError(f"Registry validation failed for {path}:\n{e}") from e

    logger.info(
        "Loaded registry",
        extra={
            "registry_file": str(path),
            "rule_count": len(registry.rules),
            "integration_count": len(registry.integrations),
        },
    )
    return registry
