"""Disk-backed TTL cache for GitHub API responses.

Entries are stored one file per key under a cache directory. Each file holds
``{"timestamp": <epoch ms>, "data": <payload>}``. The cache is an
optimization only: unreadable or corrupt entries behave like misses and write
failures are logged and ignored.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import CacheCorruptionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS = 4 * 60 * 60 * 1000


def make_key(operation: str, scope: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Build a deterministic cache key for a request.

    The request description is serialized with sorted keys at every nesting
    level, so two parameter mappings with the same content always produce the
    same key regardless of insertion order.
    """
    canonical = json.dumps(
        {"operation": operation, "scope": scope, "params": dict(params or {})},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def format_bytes(size: int) -> str:
    """Format a byte count as a short human-readable string."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1
    return f"{round(value, 2):g} {units[unit_index]}"


class FileStore:
    """Key/value byte store rooted at a directory, one ``<key>.json`` file per key."""

    _SUFFIX = ".json"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}{self._SUFFIX}"

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def write(self, key: str, data: bytes) -> None:
        """Replace the file for ``key`` atomically."""
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=self._SUFFIX)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            path.name[: -len(self._SUFFIX)]
            for path in self.root.iterdir()
            if path.is_file() and path.name.endswith(self._SUFFIX) and not path.name.startswith(".tmp-")
        )

    def size(self, key: str) -> int:
        path = self._path(key)
        return path.stat().st_size if path.exists() else 0


@dataclass(slots=True)
class CacheStats:
    """Cache hit/miss counters tracked by ``ResponseCache``."""

    hit: int = 0
    miss: int = 0
    write: int = 0
    evicted: int = 0


class ResponseCache:
    """TTL cache mapping deterministic request keys to JSON payloads."""

    key = staticmethod(make_key)

    def __init__(
        self,
        store: FileStore,
        max_age_ms: float = DEFAULT_MAX_AGE_MS,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.max_age_ms = max_age_ms
        self.enabled = enabled
        self._clock = clock
        self.stats = CacheStats()

    @classmethod
    def at(cls, cache_dir: Path, max_age_ms: float = DEFAULT_MAX_AGE_MS, enabled: bool = True) -> "ResponseCache":
        """Create a cache persisted under ``cache_dir``."""
        return cls(FileStore(cache_dir), max_age_ms=max_age_ms, enabled=enabled)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _is_expired(self, stored_at_ms: float) -> bool:
        return self._now_ms() - stored_at_ms > self.max_age_ms

    def _decode(self, raw: bytes) -> Tuple[float, Any]:
        try:
            entry = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CacheCorruptionError("cache entry is not valid JSON") from exc

        if not isinstance(entry, dict) or "data" not in entry:
            raise CacheCorruptionError("cache entry has an unexpected shape")

        stored_at = entry.get("timestamp")
        if isinstance(stored_at, bool) or not isinstance(stored_at, (int, float)):
            raise CacheCorruptionError("cache entry has no timestamp")

        return float(stored_at), entry["data"]

    def _evict(self, key: str) -> None:
        try:
            self._store.delete(key)
            self.stats.evicted += 1
        except OSError as exc:
            logger.warning("Cache eviction failed", extra={"key": key, "error": str(exc)})

    def get(self, key: str) -> Optional[Any]:
        """Return the cached payload, or ``None`` when absent, expired or unreadable."""
        if not self.enabled:
            return None

        try:
            raw = self._store.read(key)
            if raw is None:
                self.stats.miss += 1
                return None
            stored_at, payload = self._decode(raw)
        except (OSError, CacheCorruptionError) as exc:
            logger.debug("Treating unreadable cache entry as a miss", extra={"key": key, "error": str(exc)})
            self._evict(key)
            self.stats.miss += 1
            return None

        if self._is_expired(stored_at):
            self._evict(key)
            self.stats.miss += 1
            return None

        self.stats.hit += 1
        return payload

    def set(self, key: str, payload: Any) -> None:
        """Store ``payload`` under ``key``, replacing any previous entry."""
        if not self.enabled or payload is None:
            return

        try:
            data = json.dumps({"timestamp": self._now_ms(), "data": payload}).encode("utf-8")
            self._store.write(key, data)
            self.stats.write += 1
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Cache write failed", extra={"key": key, "error": str(exc)})

    def get_or_fetch(self, key: str, fetch: Callable[[], Any]) -> Any:
        """Return the cached payload or call ``fetch`` once and cache its result.

        Exceptions raised by ``fetch`` propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        payload = fetch()
        self.set(key, payload)
        return payload

    def sweep_expired(self) -> int:
        """Remove expired and corrupt entries; return how many were removed."""
        if not self.enabled:
            return 0

        try:
            keys = self._store.keys()
        except OSError as exc:
            logger.warning("Cache sweep failed", extra={"error": str(exc)})
            return 0

        removed = 0
        for key in keys:
            try:
                raw = self._store.read(key)
                if raw is None:
                    continue
                stored_at, _ = self._decode(raw)
                if not self._is_expired(stored_at):
                    continue
            except (OSError, CacheCorruptionError):
                pass
            self._evict(key)
            removed += 1

        if removed:
            logger.info("Cleaned expired cache entries", extra={"removed": removed})
        return removed

    def summary(self) -> Dict[str, Any]:
        """Describe the on-disk cache contents for the usage report."""
        if not self.enabled:
            return {"enabled": False, "entries": 0, "total_entries": 0, "size_bytes": 0, "size_formatted": "0 Bytes"}

        valid_entries = 0
        total_size = 0
        keys: List[str] = []
        try:
            keys = self._store.keys()
            for key in keys:
                total_size += self._store.size(key)
                raw = self._store.read(key)
                if raw is None:
                    continue
                try:
                    stored_at, _ = self._decode(raw)
                except CacheCorruptionError:
                    continue
                if not self._is_expired(stored_at):
                    valid_entries += 1
        except OSError as exc:
            logger.warning("Cache summary failed", extra={"error": str(exc)})

        return {
            "enabled": True,
            "entries": valid_entries,
            "total_entries": len(keys),
            "size_bytes": total_size,
            "size_formatted": format_bytes(total_size),
        }
