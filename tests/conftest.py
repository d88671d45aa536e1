"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for installer_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from agentsetup.models import (  # noqa: E402
    IntegrationDescriptor,
    ParameterSpec,
    Registry,
    Transport,
)


@pytest.fixture
def atlassian() -> IntegrationDescriptor:
    """Mandatory integration with one required URL parameter."""
    return IntegrationDescriptor(
        identifier="atlassian",
        name="Atlassian MCP Server",
        transport=Transport.SSE,
        url="https://mcp.atlassian.com/v1/sse",
        parameters={
            "JIRA_BASE_URL": ParameterSpec(
                description="Your JIRA instance URL",
                required=True,
                example="https://example.atlassian.net",
                kind="url",
            )
        },
    )


@pytest.fixture
def registry(atlassian: IntegrationDescriptor) -> Registry:
    """Small registry with three rules and one mandatory integration."""
    return Registry(rules=("A", "B", "C"), integrations=(atlassian,))


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """Undo handlers and level installed by setup_logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
