"""Structured editing of key=value files such as cpanel.config."""

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from ..exceptions import InvalidInput
from .backup import BackupManager

logger = logging.getLogger(__name__)

APACHE_PORT_KEYS = ("apache_port", "apache_ssl_port")
FEATURE_KEYS = ("allow_cache_management",)


class KeyValueFile:
    """A key=value file edited line by line.

    Only keys in the schema may be changed. Every other line, including
    comments, blank lines and their line endings, is written back unchanged.
    """

    def __init__(self, path: Path, schema: Iterable[str], text: str = ""):
        """
        Initialize a key/value file.

        Args:
            path: File location
            schema: Keys this editor is allowed to change
            text: Current file content
        """
        self.path = Path(path)
        self.schema = frozenset(schema)
        self.lines: List[str] = text.splitlines(keepends=True)

    @classmethod
    def load(cls, path: Path, schema: Iterable[str]) -> "KeyValueFile":
        """Read a file; a missing file is treated as empty."""
        path = Path(path)
        text = path.read_text() if path.exists() else ""
        return cls(path, schema, text)

    def _index(self, key: str) -> Optional[int]:
        prefix = f"{key}="
        for i, line in enumerate(self.lines):
            if line.startswith(prefix):
                return i
        return None

    def get(self, key: str) -> Optional[str]:
        """Return the value of a key, or None if absent."""
        index = self._index(key)
        if index is None:
            return None
        return self.lines[index].split("=", 1)[1].rstrip("\r\n")

    def set(self, key: str, value: str) -> bool:
        """
        Set a key, appending it if missing.

        Args:
            key: Key in the schema
            value: New value; must be a single line

        Returns:
            True if the content changed

        Raises:
            InvalidInput: If the key is outside the schema or the value spans lines
        """
        if key not in self.schema:
            raise InvalidInput(f"Refusing to edit unrecognized key: {key}")
        if "\n" in value or "\r" in value:
            raise InvalidInput(f"Value for {key} must be a single line")

        index = self._index(key)
        if index is None:
            if self.lines and not self.lines[-1].endswith("\n"):
                self.lines[-1] += "\n"
            self.lines.append(f"{key}={value}\n")
            return True

        line = self.lines[index]
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        new_line = f"{key}={value}{ending}"
        if new_line == line:
            return False
        self.lines[index] = new_line
        return True

    def serialize(self) -> str:
        """Return the file content."""
        return "".join(self.lines)

    def save(self, backups: Optional[BackupManager] = None) -> None:
        """Write the file, backing it up first when a backup manager is given."""
        if backups is not None:
            backups.write_with_backup(self.path, self.serialize())
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(self.serialize())
        logger.info(f"Updated {self.path}")
