"""
Cache collaborator.

Stateful components (the HV tracker, the per-bar handlers) keep their
state in a cache handed to them by the caller. Anything with load/store
works; InMemoryCache is the dict-backed default.
"""

from typing import Any, Dict, Optional, Protocol


class Cache(Protocol):
    def load(self, key: str) -> Optional[Any]:
        ...

    def store(self, key: str, obj: Any) -> None:
        ...


class InMemoryCache:
    """Dict-backed cache. Stores the object itself, not a copy."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def load(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def store(self, key: str, obj: Any) -> None:
        self._data[key] = obj

    def clear(self):
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self):
        return len(self._data)


def series_key(*parts) -> str:
    """Stable cache key from its parts, e.g. series_key("HV", "RTS", 60) -> "HV_RTS_60"."""
    return "_".join(str(p) for p in parts)
