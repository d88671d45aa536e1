"""Test doubles for the installation service and interactive prompts.

This package lets the reconciliation workflow run end to end without
invoking any external command or reading from a terminal.

Key Features:
- In-memory integration state with per-call recording
- Failure injection: unavailable service, failing listing, failing installs
- Scripted prompt answers with validator re-asking

Usage:
    from installer_mock import FakeInstaller, ScriptedPrompts

    installer = FakeInstaller(installed={"atlassian": True})
    prompts = ScriptedPrompts(confirms=[True])
    result = IntegrationReconciler(registry, installer, prompts).reconcile(tmp_path)

    assert installer.install_calls == []
"""

from .installer import FakeInstaller, InstallCall
from .prompts import PromptExhausted, ScriptedPrompts

__all__ = [
    "FakeInstaller",
    "InstallCall",
    "PromptExhausted",
    "ScriptedPrompts",
]
