"""
Key-Value Persistence
=====================
Async load/save of JSON documents keyed by name, plus the ``best_effort``
combinator that implements the degraded-mode policy: persistence failures
are logged and replaced by a default, never surfaced to callers.

Usage:
    store = JsonFileStore("./data")
    tasks = await best_effort(store.load("tasks"), default=None, what="load tasks")
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Awaitable, Dict, Optional, Protocol, TypeVar, Union

import aiofiles
from loguru import logger

from branchcore.core.exceptions import PersistenceError

T = TypeVar("T")

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]+")


class KeyValueStore(Protocol):
    """Minimal persistence contract consumed by the engine."""

    async def load(self, key: str) -> Optional[Any]:
        ...

    async def save(self, key: str, value: Any) -> None:
        ...


class JsonFileStore:
    """
    One JSON file per key under a root directory.

    Writes go to ``<key>.json.tmp`` first and are moved into place with
    ``os.replace`` so a crash mid-write never leaves a truncated document.
    Last writer wins; there is no cross-process locking.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        name = _SAFE_KEY.sub("_", key).strip("._") or "default"
        return self.root / f"{name}.json"

    async def load(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            return json.loads(content)
        except (OSError, ValueError) as e:
            raise PersistenceError(key=key, operation="load", reason=str(e)) from e

    async def save(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(value, indent=2, default=str)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(key=key, operation="save", reason=str(e)) from e
        logger.debug(f"[JsonFileStore] Saved '{key}' to {path}")


class MemoryStore:
    """Process-local store with the same contract, for tests and ephemeral sessions."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def load(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def save(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise PersistenceError(key=key, operation="save", reason=str(e)) from e

    def keys(self):
        return list(self._data.keys())


async def best_effort(awaitable: Awaitable[T], default: T, what: str) -> T:
    """
    Await ``awaitable``; on a persistence failure log a warning and return ``default``.

    Only storage failures are absorbed. Anything else is a programming
    error and propagates.
    """
    try:
        return await awaitable
    except (PersistenceError, OSError, ValueError) as e:
        logger.warning(f"Persistence degraded ({what}): {e}")
        return default


__all__ = ["KeyValueStore", "JsonFileStore", "MemoryStore", "best_effort"]
