"""Small in-memory TTL cache.

Instances are constructed and injected where they are needed (the Kraken
pair table, the engine's id lookups); there is no process-wide cache.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional


DEFAULT_TTL = 300.0


@dataclass
class _Entry:
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    def __init__(self, default_ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = _Entry(value, self._clock(), self.default_ttl if ttl is None else ttl)

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._expired(entry):
            del self._entries[key]
            return default
        return entry.value

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        expired = [k for k, e in self._entries.items() if self._expired(e)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "keys": list(self._entries.keys())}

    def _expired(self, entry: _Entry) -> bool:
        return (self._clock() - entry.stored_at) > entry.ttl


_MISSING = object()
