from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Protocol


@dataclass
class CacheEntry:
    data: Any
    stored_at: float  # epoch seconds
    ttl_ms: int

    def age_ms(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return (now - self.stored_at) * 1000

    def is_fresh(self, now: float | None = None) -> bool:
        return self.age_ms(now) <= self.ttl_ms


class ResponseCache(Protocol):
    def get(self, key: str) -> CacheEntry | None:
        ...

    def set(self, key: str, data: Any, ttl_ms: int) -> None:
        ...


class MemoryCache:
    """Process-local cache. Entries are never pruned; freshness is checked by the caller."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, key: str, data: Any, ttl_ms: int) -> None:
        self._entries[key] = CacheEntry(data=data, stored_at=time.time(), ttl_ms=ttl_ms)

    def __len__(self) -> int:
        return len(self._entries)


class FileCache:
    """
    Directory-backed cache, one JSON file per request URL.

    Files are named by the SHA-256 of the key and replaced atomically, so
    concurrent writers for the same key simply leave the last write in place.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> CacheEntry | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            with path.open() as f:
                raw = json.load(f)
            return CacheEntry(data=raw["data"], stored_at=float(raw["stored_at"]), ttl_ms=int(raw["ttl_ms"]))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logging.debug("Ignoring unreadable cache file %s: %s", path, exc)
            return None

    def set(self, key: str, data: Any, ttl_ms: int) -> None:
        path = self._path_for(key)
        payload = {"key": key, "stored_at": time.time(), "ttl_ms": ttl_ms, "data": data}
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
