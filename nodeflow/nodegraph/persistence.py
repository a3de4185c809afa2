"""Persistence stores - where palette layout, autosave and custom nodes live.

The editor only talks to the PersistenceStore protocol; MemoryStore is
the default (and what tests use), JsonFileStore keeps one JSON file per
key in a directory.
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

from nodeflow import log

_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


@runtime_checkable
class PersistenceStore(Protocol):
    """Key/value store of JSON-compatible values."""

    def load(self, key: str) -> Optional[Any]:
        ...

    def save(self, key: str, value: Any) -> bool:
        ...

    def clear(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store. Values are deep-copied on the way in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def load(self, key: str) -> Optional[Any]:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> bool:
        self._data[key] = copy.deepcopy(value)
        return True

    def clear(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileStore:
    """
    One `{key}.json` file per key.

    Writes are atomic: the JSON goes to a temporary file in the same
    directory which then replaces the target.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_KEY_RE.sub('_', key)}.json"

    def load(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            log.warn(e, f"Failed to read {path}")
            return None

    def save(self, key: str, value: Any) -> bool:
        path = self.path_for(key)
        json_str = json.dumps(value, indent=2, ensure_ascii=False)

        self.directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            suffix=".tmp",
            dir=str(self.directory),
            delete=False
        ) as f:
            f.write(json_str)
            temp_path = f.name

        try:
            os.replace(temp_path, path)
        except OSError:
            os.unlink(temp_path)
            raise
        return True

    def clear(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
