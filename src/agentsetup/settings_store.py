"""Read/write access to the settings document.

The document is JSON with comments. Reads go through json5 so hand-edited
files with comments or trailing commas still parse. New documents are
written as pretty-printed JSON; appends to an existing document are spliced
into its original text so comments and layout survive. Every write goes to
a sibling temp file that is moved over the original with os.replace, so a
failed write never leaves a partial document behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import json5

from .config import MAX_SETTINGS_FILE_SIZE_BYTES
from .jsonc import append_strings

logger = logging.getLogger(__name__)


class SettingsError(Exception):
    """Base class for settings document errors."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class ParseError(SettingsError):
    """Raised when an existing settings document is unreadable or malformed."""

    pass


class WriteError(SettingsError):
    """Raised when a settings document cannot be persisted."""

    pass


def dumps(document: dict[str, Any]) -> str:
    """Serialize a document as stable pretty-printed JSON."""
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def render_append(
    original: str,
    document: dict[str, Any],
    key_path: Sequence[str],
    values: Sequence[str],
) -> str:
    """Text for `document`, written as `original` with `values` appended at `key_path`.

    The splice is checked by parsing it back. If it cannot be made or does
    not parse to `document`, the whole document is serialized instead and
    the original comments are lost.
    """
    try:
        content = append_strings(original, key_path, values)
        if json5.loads(content) == document:
            return content
        reason = "edited text does not match the merged document"
    except ValueError as e:
        reason = str(e)
    logger.warning(f"Could not edit settings in place, rewriting without comments: {reason}")
    return dumps(document)


@dataclass(frozen=True)
class LoadedSettings:
    """A parsed settings document together with its source text."""

    text: str
    document: dict[str, Any]


class SettingsStore:
    """Loads and atomically saves one settings document."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self) -> LoadedSettings | None:
        """Read and parse the document, keeping its source text.

        Returns:
            The loaded document, or None if no file exists.

        Raises:
            ParseError: If the file exists but cannot be read or parsed.
        """
        if not self._path.exists():
            return None

        try:
            file_size = self._path.stat().st_size
            if file_size > MAX_SETTINGS_FILE_SIZE_BYTES:
                raise ParseError(
                    f"Settings file exceeds maximum size of {MAX_SETTINGS_FILE_SIZE_BYTES} bytes "
                    f"({file_size} bytes)",
                    self._path,
                )
            # Keep line endings as they are so appends do not rewrite them
            with self._path.open(encoding="utf-8", newline="") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Could not read {self._path.name}: {e}", self._path) from e

        try:
            document = json5.loads(content)
        except ValueError as e:
            raise ParseError(f"Could not parse {self._path.name}: {e}", self._path) from e

        if not isinstance(document, dict):
            raise ParseError(
                f"{self._path.name} must contain a JSON object at the top level",
                self._path,
            )

        logger.debug("Loaded settings document", extra={"settings_file": str(self._path)})
        return LoadedSettings(text=content, document=document)

    def load(self) -> dict[str, Any] | None:
        """Parsed document, or None if no file exists."""
        loaded = self.read()
        return None if loaded is None else loaded.document

    def save(self, document: dict[str, Any]) -> None:
        """Replace the document on disk.

        Raises:
            WriteError: If the directory cannot be created or the file cannot
                be replaced. The previous file is left untouched.
        """
        self._write(dumps(document))

    def append(
        self,
        loaded: LoadedSettings,
        document: dict[str, Any],
        key_path: Sequence[str],
        values: Sequence[str],
    ) -> None:
        """Write `document`, which is `loaded` with `values` appended at `key_path`.

        Raises:
            WriteError: As for save().
        """
        self._write(render_append(loaded.text, document, key_path, values))

    def _write(self, content: str) -> None:
        tmp_name: str | None = None

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                newline="",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self._path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            logger.error(
                f"Failed to write {self._path.name}: {e}",
                extra={"settings_file": str(self._path)},
            )
            raise WriteError(f"Failed to write {self._path.name}: {e}", self._path) from e

        logger.info("Wrote settings document", extra={"settings_file": str(self._path)})
