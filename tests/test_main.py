"""Tests for logging setup, run_setup and the env-driven entry point."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from installer_mock import FakeInstaller, ScriptedPrompts

from agentsetup import main as main_module
from agentsetup.config import Config
from agentsetup.integrations import ReconciliationResult
from agentsetup.main import JsonFormatter, SetupResult, main, run_setup, setup_logging
from agentsetup.permissions import PermissionOutcome, PermissionResult
from agentsetup.prompts import DefaultPrompts
from agentsetup.registry import DEFAULT_RULES


class TestJsonFormatter:
    """Tests for structured log output."""

    def test_includes_extra_fields(self) -> None:
        record = logging.makeLogRecord(
            {
                "name": "agentsetup.installer",
                "msg": "Adding %s",
                "args": ("Atlassian",),
                "levelname": "INFO",
                "levelno": logging.INFO,
                "integration": "atlassian",
            }
        )

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Adding Atlassian"
        assert data["level"] == "INFO"
        assert data["logger"] == "agentsetup.installer"
        assert data["integration"] == "atlassian"
        assert data["timestamp"].endswith("Z")
        assert "msg" not in data
        assert "args" not in data

    def test_non_serializable_extra(self, tmp_path: Path) -> None:
        record = logging.makeLogRecord({"msg": "x", "settings_file": tmp_path})
        data = json.loads(JsonFormatter().format(record))
        assert data["settings_file"] == str(tmp_path)

    def test_exception(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "agentsetup", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        data = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_replaces_previous_handler(self) -> None:
        setup_logging("INFO")
        setup_logging("DEBUG", json_logs=True)

        root = logging.getLogger()
        ours = [h for h in root.handlers if h.get_name() == "agentsetup"]
        assert len(ours) == 1
        assert isinstance(ours[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG

    def test_level_case_insensitive(self) -> None:
        setup_logging("error")
        assert logging.getLogger().level == logging.ERROR


class TestSetupResult:
    """Tests for the combined exit code."""

    def test_success(self) -> None:
        result = SetupResult(
            permissions=PermissionResult(outcome=PermissionOutcome.SKIPPED),
            integrations=ReconciliationResult(skipped=("atlassian",), checked=("atlassian",)),
        )
        assert result.exit_code == 0

    def test_permission_error(self) -> None:
        result = SetupResult(
            permissions=PermissionResult(outcome=PermissionOutcome.ERROR, error="bad"),
            integrations=ReconciliationResult(),
        )
        assert result.exit_code == 1

    def test_failed_integration(self) -> None:
        result = SetupResult(
            permissions=PermissionResult(outcome=PermissionOutcome.UNCHANGED),
            integrations=ReconciliationResult(checked=("atlassian",), failed=("atlassian",)),
        )
        assert result.exit_code == 1

    def test_unavailable_service_is_not_fatal(self) -> None:
        result = SetupResult(
            permissions=PermissionResult(outcome=PermissionOutcome.CREATED, added=3),
            integrations=ReconciliationResult(service_available=False),
        )
        assert result.exit_code == 0


class TestRunSetup:
    """Tests for the full setup pass."""

    def test_interactive(self, tmp_path: Path) -> None:
        """Test permissions are written, then the integration is installed."""
        installer = FakeInstaller()
        prompts = ScriptedPrompts(
            confirms=[True, True, False], texts=["https://acme.atlassian.net"]
        )

        result = run_setup(Config(target_dir=tmp_path), prompts=prompts, installer=installer)

        assert result.permissions.outcome is PermissionOutcome.CREATED
        assert result.permissions.added == len(DEFAULT_RULES)
        assert result.integrations.installed == ("atlassian",)
        assert result.exit_code == 0

        settings = json.loads(
            (tmp_path / ".claude" / "settings.local.json").read_text(encoding="utf-8")
        )
        assert settings["permissions"]["allow"] == list(DEFAULT_RULES)

    def test_assume_yes_disables_custom(self, tmp_path: Path) -> None:
        """Test unattended runs accept defaults and never ask for custom integrations."""
        installer = FakeInstaller()
        prompts = ScriptedPrompts(confirms=[True, True], texts=[None])

        result = run_setup(
            Config(target_dir=tmp_path, assume_yes=True), prompts=prompts, installer=installer
        )

        assert result.integrations.installed == ("atlassian",)
        assert "Add a custom integration?" not in prompts.asked
        assert installer.install_calls[0].parameters == {
            "JIRA_BASE_URL": "https://yourcompany.atlassian.net"
        }

    def test_custom_settings_path(self, tmp_path: Path) -> None:
        config = Config(target_dir=tmp_path, settings_path=Path("agent.json"))

        run_setup(config, prompts=DefaultPrompts(), installer=FakeInstaller(available=False))

        assert (tmp_path / "agent.json").is_file()

    def test_registry_file(self, tmp_path: Path) -> None:
        registry_file = tmp_path / "registry.yaml"
        registry_file.write_text("rules:\n  - Bash(make test)\n", encoding="utf-8")
        installer = FakeInstaller()

        result = run_setup(
            Config(target_dir=tmp_path, registry_file=registry_file),
            prompts=ScriptedPrompts(confirms=[True, False]),
            installer=installer,
        )

        assert result.permissions.added == 1
        assert result.integrations.checked == ()


class TestMain:
    """Tests for the env-driven entry point."""

    def test_configuration_error(self, tmp_path: Path) -> None:
        env = {"AGENTSETUP_TARGET_DIR": str(tmp_path / "missing")}
        with patch.dict(os.environ, env, clear=True):
            assert main() == 1

    def test_registry_error(self, tmp_path: Path) -> None:
        registry_file = tmp_path / "registry.yaml"
        registry_file.write_text("rules: [unclosed", encoding="utf-8")
        env = {
            "AGENTSETUP_TARGET_DIR": str(tmp_path),
            "AGENTSETUP_REGISTRY_FILE": str(registry_file),
        }
        with patch.dict(os.environ, env, clear=True):
            assert main() == 1

    def test_unattended_success(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        installer = FakeInstaller()
        monkeypatch.setattr(main_module, "build_installer", lambda config: installer)
        env = {"AGENTSETUP_TARGET_DIR": str(tmp_path), "AGENTSETUP_ASSUME_YES": "true"}

        with patch.dict(os.environ, env, clear=True):
            assert main() == 0

        assert (tmp_path / ".claude" / "settings.local.json").is_file()
        assert installer.installed_identifiers == ["atlassian"]

    def test_failed_install_exit_code(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        installer = FakeInstaller(fail_installs={"atlassian"})
        monkeypatch.setattr(main_module, "build_installer", lambda config: installer)
        env = {"AGENTSETUP_TARGET_DIR": str(tmp_path), "AGENTSETUP_ASSUME_YES": "true"}

        with patch.dict(os.environ, env, clear=True):
            assert main() == 1
