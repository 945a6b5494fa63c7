"""JSON key/value store addressed by path segments.

A path like ["todos", "abc123"] maps to <data_dir>/todos/abc123.json.
Writes go to a temp file in the target directory and are moved into
place with os.replace, so readers never observe a half-written file.
There is no in-process locking: concurrent writers to one key are
last-write-wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from dadgpt.errors import StorageError

logger = logging.getLogger(__name__)

StoragePath = Sequence[str]


class JsonStore:
    """Async facade over a directory of JSON documents.

    File I/O runs in a worker thread via asyncio.to_thread. Missing keys
    read as None and list as empty; every other I/O failure is raised as
    StorageError carrying the underlying message.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _file(self, path: StoragePath) -> Path:
        if not path:
            raise StorageError("Storage path must have at least one segment")
        base = self._dir(path)
        return base.parent / f"{base.name}.json"

    def _dir(self, path: StoragePath) -> Path:
        for segment in path:
            if not segment or segment in (".", "..") or "/" in segment or "\\" in segment:
                raise StorageError(f"Invalid storage path segment: {segment!r}")
        return self._root.joinpath(*path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def read(self, path: StoragePath) -> Any | None:
        """Return the decoded document at path, or None if it does not exist."""
        target = self._file(path)
        try:
            return await asyncio.to_thread(_read_json, target)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {'/'.join(path)}: {e}") from e

    async def write(self, path: StoragePath, data: Any) -> None:
        """Atomically replace the document at path."""
        target = self._file(path)
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        try:
            payload = json.dumps(data, indent=2, default=str)
            await asyncio.to_thread(_atomic_write, target, payload)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {'/'.join(path)}: {e}") from e
        logger.debug("Wrote %s", target)

    async def update(self, path: StoragePath, fn: Callable[[Any | None], Any]) -> Any:
        """Read, transform with fn, write back. Returns the new document."""
        current = await self.read(path)
        updated = fn(current)
        await self.write(path, updated)
        return updated

    async def remove(self, path: StoragePath) -> bool:
        """Delete the document at path. Returns False if it was not there."""
        target = self._file(path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to remove {'/'.join(path)}: {e}") from e
        return True

    async def remove_tree(self, prefix: StoragePath) -> None:
        """Delete every document under prefix (used for cascading deletes)."""
        target = self._dir(prefix)
        try:
            await asyncio.to_thread(_remove_tree, target)
        except OSError as e:
            raise StorageError(f"Failed to remove {'/'.join(prefix)}: {e}") from e

    async def list(self, prefix: StoragePath) -> list[str]:
        """Return the sorted leaf ids (file stems) directly under prefix."""
        target = self._dir(prefix)
        try:
            return await asyncio.to_thread(_list_stems, target)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to list {'/'.join(prefix)}: {e}") from e

    async def exists(self, path: StoragePath) -> bool:
        target = self._file(path)
        return await asyncio.to_thread(target.is_file)


# ---------------------------------------------------------------------------
# Blocking helpers (run in worker threads)
# ---------------------------------------------------------------------------


def _read_json(target: Path) -> Any:
    with target.open("r", encoding="utf-8") as f:
        return json.load(f)


def _atomic_write(target: Path, payload: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _list_stems(target: Path) -> list[str]:
    if not target.is_dir():
        raise FileNotFoundError(target)
    return sorted(p.stem for p in target.iterdir() if p.is_file() and p.suffix == ".json")


def _remove_tree(target: Path) -> None:
    if not target.exists():
        return
    for child in sorted(target.rglob("*"), reverse=True):
        if child.is_dir():
            child.rmdir()
        else:
            child.unlink()
    target.rmdir()
