"""Persisted state blobs.

Each owning structure (site ledger, history index, block lists,
subscriber registry) is stored as one JSON file named by its key
under the configured storage directory.  A blob is rewritten in
full on every mutation of its owner.

Writes are fire-and-forget: the payload is serialised at call
time (so later mutations never leak into an earlier snapshot) and
written on a worker thread when an event loop is running.  A
failed write only costs durability and is logged, never raised.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import os
import pathlib
import threading
from typing import Any

from trackingtracker.utils import errors, logger

log = logger.create_logger("BlobStore")


class BlobStore:
    """JSON blob persistence keyed by name."""

    def __init__(self, directory: pathlib.Path) -> None:
        self._dir = directory
        self._seq = itertools.count(1)
        self._latest: dict[str, int] = {}
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def directory(self) -> pathlib.Path:
        return self._dir

    def _path(self, key: str) -> pathlib.Path:
        return self._dir / f"{key}.json"

    def load(self, key: str) -> Any | None:
        """Read a blob, returning ``None`` when missing or malformed."""
        path = self._path(key)
        if not path.exists():
            log.debug("No persisted blob", {"key": key})
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warn("Failed to read blob, ignoring", {"key": key, "error": errors.get_error_message(exc)})
            return None

    def save(self, key: str, payload: Any) -> None:
        """Snapshot *payload* and write it without blocking the caller."""
        text = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        seq = next(self._seq)
        self._latest[key] = seq

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(key, text, seq)
            return

        task = loop.create_task(asyncio.to_thread(self._write, key, text, seq))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _write(self, key: str, text: str, seq: int) -> None:
        """Atomically replace the blob file unless a newer snapshot exists."""
        with self._lock:
            if self._latest.get(key) != seq:
                return
            path = self._path(key)
            tmp = path.with_suffix(".json.tmp")
            try:
                self._dir.mkdir(parents=True, exist_ok=True)
                tmp.write_text(text, encoding="utf-8")
                os.replace(tmp, path)
            except OSError as exc:
                log.warn("Failed to write blob", {"key": key, "error": errors.get_error_message(exc)})

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
