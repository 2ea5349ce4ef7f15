from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from copy import deepcopy
from pathlib import Path
from typing import Any

"""TTL key-value stores backing import contexts and drafts.

Values are plain JSON-compatible data. An entry past its TTL behaves as if it
was never written; expired entries are pruned lazily on access.

- MemoryStore: process-local dict under a lock (one server process)
- JsonFileStore: one JSON file per key under a directory, so a preview and a
  later commit run from separate CLI invocations share state
"""

__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
]

Clock = Callable[[], float]


class KeyValueStore(ABC):
    """Minimal TTL key-value contract used by the state layer."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    @abstractmethod
    def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        ...

    @abstractmethod
    def pop(self, key: str) -> Any | None:
        """Read and delete under one lock (take-once semantics)."""
        ...

    def _expires_at(self, ttl_seconds: float | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self.now() + ttl_seconds


class MemoryStore(KeyValueStore):
    def __init__(self, clock: Clock = time.time) -> None:
        super().__init__(clock)
        self._lock = threading.Lock()
        self._data: dict[str, tuple[float | None, Any]] = {}

    def _prune(self, now: float) -> None:
        expired = [k for k, (exp, _) in self._data.items() if exp is not None and now >= exp]
        for k in expired:
            self._data.pop(k, None)

    def get(self, key: str) -> Any | None:
        with self._lock:
            self._prune(self.now())
            entry = self._data.get(key)
            if entry is None:
                return None
            return deepcopy(entry[1])

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        with self._lock:
            self._prune(self.now())
            self._data[key] = (self._expires_at(ttl_seconds), deepcopy(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str) -> Any | None:
        with self._lock:
            self._prune(self.now())
            entry = self._data.pop(key, None)
            return None if entry is None else entry[1]

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            self._prune(self.now())
            return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileStore(KeyValueStore):
    """File-per-key store. File names are the SHA-1 of the key."""

    def __init__(self, directory: Path, clock: Clock = time.time) -> None:
        super().__init__(clock)
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _load(self, path: Path) -> dict[str, Any] | None:
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            # A torn or foreign file is treated as absent and removed.
            path.unlink(missing_ok=True)
            return None
        exp = doc.get("expires_at")
        if exp is not None and self.now() >= exp:
            path.unlink(missing_ok=True)
            return None
        return doc

    def get(self, key: str) -> Any | None:
        with self._lock:
            doc = self._load(self._path(key))
            return None if doc is None else doc.get("value")

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        doc = {"key": key, "expires_at": self._expires_at(ttl_seconds), "value": value}
        payload = json.dumps(doc, ensure_ascii=False)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp, self._path(key))
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    def delete(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)

    def pop(self, key: str) -> Any | None:
        with self._lock:
            path = self._path(key)
            doc = self._load(path)
            if doc is None:
                return None
            path.unlink(missing_ok=True)
            return doc.get("value")

    def keys(self, prefix: str = "") -> list[str]:
        if not self.directory.exists():
            return []
        out: list[str] = []
        with self._lock:
            for path in self.directory.glob("*.json"):
                if path.name.startswith(".tmp-"):
                    continue
                doc = self._load(path)
                if doc is not None and str(doc.get("key", "")).startswith(prefix):
                    out.append(doc["key"])
        return sorted(out)
