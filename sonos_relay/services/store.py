"""
Canonical persisted state shared by every context.
- JSON file on disk, loaded lazily, rewritten atomically on each write.
- All writes go through one asyncio lock; `merge` does its
  read-modify-write inside that lock so concurrent writers never drop
  each other's fields.
"""
import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    pass


class StateStore:
    def __init__(self, path: Path, defaults: Optional[Mapping[str, Any]] = None):
        self._path = path
        self._defaults = dict(defaults or {})
        self._lock = asyncio.Lock()
        self._load_lock = asyncio.Lock()
        self._data: Optional[dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, *keys: str) -> dict[str, Any]:
        """Values for `keys` (all keys when none given), falling back to defaults."""
        data = await self._load()
        wanted = keys or tuple({**self._defaults, **data})
        result: dict[str, Any] = {}
        for key in wanted:
            if key in data:
                result[key] = copy.deepcopy(data[key])
            elif key in self._defaults:
                result[key] = copy.deepcopy(self._defaults[key])
        return result

    async def set(self, items: Mapping[str, Any]) -> None:
        async with self._lock:
            data = await self._load()
            updated = {**data, **copy.deepcopy(dict(items))}
            await self._write(updated)

    async def merge(self, key: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Merge `fields` into the mapping stored under `key`; returns the result."""
        async with self._lock:
            data = await self._load()
            current = data.get(key, self._defaults.get(key))
            base = dict(current) if isinstance(current, dict) else {}
            base.update(copy.deepcopy(dict(fields)))
            await self._write({**data, key: base})
            return copy.deepcopy(base)

    async def _load(self) -> dict[str, Any]:
        # a single first read; later callers wait for it instead of re-reading
        if self._data is None:
            async with self._load_lock:
                if self._data is None:
                    self._data = await asyncio.to_thread(_read_json, self._path)
        return self._data

    async def _write(self, data: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(_write_json, self._path, data)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write {self._path}: {exc}") from exc
        self._data = data
        logger.debug("State written", extra={"path": str(self._path), "keys": sorted(data)})


def _read_json(path: Path) -> dict[str, Any]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Discarding unreadable state file", extra={"path": str(path), "error": str(exc)})
        return {}
    return raw if isinstance(raw, dict) else {}


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp, path)
