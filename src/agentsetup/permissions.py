"""Permission reconciler: keep the settings allowlist complete.

The allowlist lives at `permissions.allow` in the settings document. Only
missing rules are appended. Existing entries keep their order, and the rest
of the document, comments included, is left as it was.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .prompts import PromptProvider
from .settings_store import LoadedSettings, ParseError, SettingsError, SettingsStore

logger = logging.getLogger(__name__)

ALLOWLIST_PATH = ("permissions", "allow")


class PermissionOutcome(str, Enum):
    """Outcome of a permission reconciliation."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class PermissionResult:
    """Result of one permission reconciliation pass."""

    outcome: PermissionOutcome
    added: int = 0
    document: dict[str, Any] | None = None
    error: str | None = None
    settings_existed: bool = False

    @property
    def success(self) -> bool:
        return self.outcome is not PermissionOutcome.ERROR


def compute_missing(required: Iterable[str], current: Iterable[Any]) -> list[str]:
    """Required rules not present in current, in the order of `required`.

    Exact string comparison, no duplicates in the result. Non-string entries
    in `current` never match.
    """
    present = {entry for entry in current if isinstance(entry, str)}
    missing: list[str] = []
    for rule in required:
        if rule not in present:
            missing.append(rule)
            present.add(rule)
    return missing


def _allowlist(document: dict[str, Any]) -> list[Any]:
    """Return the document's allowlist, creating empty containers if absent."""
    permissions = document.setdefault("permissions", {})
    if not isinstance(permissions, dict):
        raise ParseError("'permissions' must be an object")
    allow = permissions.setdefault("allow", [])
    if not isinstance(allow, list):
        raise ParseError("'permissions.allow' must be a list")
    return allow


def merge_rules(document: dict[str, Any], rules: Iterable[str]) -> list[str]:
    """Append missing rules to the document's allowlist in place.

    Returns:
        The rules appended, in order.
    """
    allow = _allowlist(document)
    missing = compute_missing(rules, allow)
    allow.extend(missing)
    return missing


def manual_instructions(rules: Sequence[str], preview: int = 5) -> str:
    """Example settings content for users setting up permissions by hand."""
    sample = list(rules[:preview])
    if len(rules) > preview:
        sample.append("... (see full list with `agentsetup rules`)")
    example = {"permissions": {"allow": sample}}
    return (
        "1. Create .claude/settings.local.json in your project root\n"
        "2. Add the following content:\n\n" + json.dumps(example, indent=2)
    )


class PermissionReconciler:
    """Reconciles the canonical rules against a project's settings document."""

    def __init__(
        self,
        rules: Sequence[str],
        prompts: PromptProvider,
        settings_path: Path = Path(".claude") / "settings.local.json",
    ) -> None:
        self._rules = tuple(rules)
        self._prompts = prompts
        self._settings_path = settings_path

    @property
    def rules(self) -> tuple[str, ...]:
        return self._rules

    def store_for(self, target_dir: Path) -> SettingsStore:
        return SettingsStore(target_dir / self._settings_path)

    def reconcile(self, target_dir: Path) -> PermissionResult:
        """Bring the target's allowlist up to date.

        Never raises for document problems; parse and write failures are
        reported through the ERROR outcome.
        """
        store = self.store_for(target_dir)

        try:
            loaded = store.read()
        except ParseError as e:
            logger.error(str(e), extra={"settings_file": str(store.path)})
            return PermissionResult(
                outcome=PermissionOutcome.ERROR, error=str(e), settings_existed=True
            )

        if loaded is None:
            return self._create(store)
        return self._update(store, loaded)

    def _create(self, store: SettingsStore) -> PermissionResult:
        if not self._prompts.confirm(
            "Grant the agent the required permissions? (Recommended)", default=True
        ):
            logger.info("Skipping permissions setup")
            return PermissionResult(outcome=PermissionOutcome.SKIPPED)

        document: dict[str, Any] = {"permissions": {"allow": list(self._rules)}}
        try:
            store.save(document)
        except SettingsError as e:
            return PermissionResult(outcome=PermissionOutcome.ERROR, error=str(e))

        logger.info(
            f"Created {store.path.name}",
            extra={"settings_file": str(store.path), "added": len(self._rules)},
        )
        return PermissionResult(
            outcome=PermissionOutcome.CREATED, added=len(self._rules), document=document
        )

    def _update(self, store: SettingsStore, loaded: LoadedSettings) -> PermissionResult:
        document = loaded.document
        # Work on a copy so a declined or failed apply leaves the loaded state intact
        proposed = copy.deepcopy(document)
        try:
            appended = merge_rules(proposed, self._rules)
        except ParseError as e:
            message = f"Malformed {store.path.name}: {e}"
            logger.error(message, extra={"settings_file": str(store.path)})
            return PermissionResult(
                outcome=PermissionOutcome.ERROR,
                document=document,
                error=message,
                settings_existed=True,
            )

        added = len(appended)
        if added == 0:
            logger.info("Required permissions already present")
            return PermissionResult(
                outcome=PermissionOutcome.UNCHANGED, document=document, settings_existed=True
            )

        if not self._prompts.confirm(
            f"Add {added} missing permissions to existing {store.path.name}?", default=True
        ):
            logger.info("Skipping permissions update")
            return PermissionResult(
                outcome=PermissionOutcome.SKIPPED, document=document, settings_existed=True
            )

        try:
            store.append(loaded, proposed, ALLOWLIST_PATH, appended)
        except SettingsError as e:
            return PermissionResult(
                outcome=PermissionOutcome.ERROR,
                document=document,
                error=str(e),
                settings_existed=True,
            )

        logger.info(
            f"Updated {store.path.name}",
            extra={"settings_file": str(store.path), "added": added},
        )
        return PermissionResult(
            outcome=PermissionOutcome.UPDATED,
            added=added,
            document=proposed,
            settings_existed=True,
        )

    def add_rules(self, target_dir: Path, rules: Iterable[str]) -> int:
        """Merge extra rules into the target's allowlist without prompting.

        Creates the document if it does not exist and only writes when
        something was added.

        Raises:
            SettingsError: If the document cannot be parsed or written.
        """
        store = self.store_for(target_dir)
        loaded = store.read()
        if loaded is None:
            document: dict[str, Any] = {}
        else:
            document = copy.deepcopy(loaded.document)
        appended = merge_rules(document, rules)
        if not appended:
            return 0

        if loaded is None:
            store.save(document)
        else:
            store.append(loaded, document, ALLOWLIST_PATH, appended)
        logger.info(
            f"Added {len(appended)} custom permissions", extra={"added": len(appended)}
        )
        return len(appended)
