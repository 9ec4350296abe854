# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Persistence adapters for session snapshots.

A persistence adapter stores one opaque JSON string per storage key.
The session cache decides what goes into the string; adapters only move
it to and from durable storage.

Implementations:
- InMemoryStore: dict backed, for tests and short-lived processes
- JsonFileStore: one file per key in a directory
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol, runtime_checkable
from urllib.parse import quote, unquote

from session_recall.errors import PersistenceCorruptionError

logger = logging.getLogger(__name__)


@runtime_checkable
class PersistenceAdapter(Protocol):
    """
    Protocol for snapshot persistence storage.

    Calls are synchronous; the cache persists after every mutation.
    """

    def load(self, key: str) -> Optional[str]:
        """
        Load a stored value.

        Args:
            key: Storage key

        Returns:
            Stored string if found, None otherwise

        Raises:
            PersistenceCorruptionError: If the stored bytes cannot be read
        """
        ...

    def save(self, key: str, value: str) -> None:
        """
        Store a value, replacing any previous value for the key.

        Args:
            key: Storage key
            value: Serialized snapshot
        """
        ...

    def delete(self, key: str) -> None:
        """
        Delete a stored value. Missing keys are ignored.

        Args:
            key: Storage key
        """
        ...


class InMemoryStore:
    """Dict-backed persistence adapter."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def save(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore:
    """
    Directory-backed persistence adapter.

    Each key is stored as ``<percent-encoded key>.json``. Writes go to a
    temporary file in the same directory and are moved into place with
    os.replace, so a reader never sees a half-written snapshot.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{self.SUFFIX}"

    def load(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise PersistenceCorruptionError(key, f"not valid UTF-8: {e.reason}") from e

    def save(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=self.SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved snapshot {key} to {path}")

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> Iterator[str]:
        """Iterate stored keys."""
        for path in sorted(self.directory.glob(f"*{self.SUFFIX}")):
            if path.name.startswith(".tmp-"):
                continue
            yield unquote(path.name[: -len(self.SUFFIX)])
