"""
In-memory, place-keyed cache of WAQI feed results.

Each place key maps to exactly one CacheEntry:
  - Reading: the feed's "data" object for a successful lookup
  - Fault:   the error message the service returned for an unsuccessful one

Entries are immutable; storing under an existing key replaces the old
entry outright. Transport failures are never stored here (see
retrieval.py), so an absent key always means "nothing fetched yet".

The store lives for the life of the process. Tests and long-running
hosts use new_store() / teardown() to get a clean one.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

FieldPath = Union[str, Tuple[Union[str, int], ...]]


class MissingFieldError(LookupError):
    """A field path did not resolve in a cached entry.

    Raised for Faults, absent entries, and Readings that lack the
    requested field.
    """

    def __init__(self, place: str, path: Tuple[Union[str, int], ...] = (), reason: str = ""):
        self.place = place
        self.path = path
        self.reason = reason
        dotted = ".".join(str(p) for p in path) or "<entry>"
        msg = f"{dotted} not available for {place!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ApplicationFault(Exception):
    """The WAQI service answered but reported an error for the place."""

    def __init__(self, place: str, message: str):
        self.place = place
        self.message = message
        super().__init__(f"Request error: {message} ({place})")


# =============================================================================
# Entry types
# =============================================================================

def _freeze(value: Any) -> Any:
    """Deep-copy JSON data into read-only mappings and tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def normalize_path(path: FieldPath) -> Tuple[Union[str, int], ...]:
    """Turn "city.geo.0" or ("city", "geo", 0) into a key tuple."""
    if isinstance(path, str):
        parts: List[Union[str, int]] = []
        for part in path.split("."):
            parts.append(int(part) if part.isdigit() else part)
        return tuple(parts)
    return tuple(path)


@dataclass(frozen=True)
class Reading:
    """A successful feed result for one place."""
    place: str
    data: Mapping[str, Any]

    kind = "reading"

    @classmethod
    def from_feed(cls, place: str, data: Mapping[str, Any]) -> "Reading":
        return cls(place=place, data=_freeze(data))

    def lookup(self, path: FieldPath) -> Any:
        """Walk a field path through the reading.

        Raises MissingFieldError if any step is absent or null.
        """
        keys = normalize_path(path)
        node: Any = self.data
        for key in keys:
            try:
                if isinstance(key, int):
                    if not isinstance(node, tuple):
                        raise TypeError(type(node).__name__)
                    node = node[key]
                else:
                    node = node[key]
            except (KeyError, IndexError, TypeError):
                raise MissingFieldError(self.place, keys) from None
        if node is None:
            raise MissingFieldError(self.place, keys, "null value")
        return node

    def get(self, path: FieldPath, default: Any = None) -> Any:
        """Like lookup(), but returns default for an expected-absent field."""
        try:
            return self.lookup(path)
        except MissingFieldError:
            return default


@dataclass(frozen=True)
class Fault:
    """An application-level error the service reported for one place."""
    place: str
    message: str

    kind = "fault"

    @property
    def description(self) -> str:
        return f"Request error: {self.message}"

    def raise_for_fault(self):
        raise ApplicationFault(self.place, self.message)


CacheEntry = Union[Reading, Fault]


# =============================================================================
# Store
# =============================================================================

class CacheStore:
    """Mapping of place key -> CacheEntry, safe to share across threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._stored_at: Dict[str, datetime] = {}

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry
            self._stored_at[key] = datetime.now(timezone.utc)
        logger.debug("Cached %s for %r", entry.kind, key)

    def clear(self, key: Optional[str] = None) -> None:
        """Evict one place, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
                self._stored_at.clear()
            else:
                self._entries.pop(key, None)
                self._stored_at.pop(key, None)

    def stored_at(self, key: str) -> Optional[datetime]:
        with self._lock:
            return self._stored_at.get(key)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Module-level default store; all callers in this process share one instance
_store: Optional[CacheStore] = None
_store_lock = threading.Lock()


def new_store() -> CacheStore:
    """Install and return a fresh, empty default store."""
    global _store
    with _store_lock:
        _store = CacheStore()
        return _store


def get_store() -> CacheStore:
    """Return the process-wide store, creating it on first use."""
    global _store
    with _store_lock:
        if _store is None:
            _store = CacheStore()
        return _store


def teardown() -> None:
    """Empty and drop the default store."""
    global _store
    with _store_lock:
        if _store is not None:
            _store.clear()
        _store = None


def entries_summary(store: CacheStore, keys: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
    """Describe cached entries (kind and store time) for health output."""
    rows = []
    for key in (keys if keys is not None else store.keys()):
        entry = store.get(key)
        if entry is None:
            continue
        stored = store.stored_at(key)
        rows.append({
            "place": key,
            "kind": entry.kind,
            "stored_at": stored.isoformat() if stored else None,
        })
    return rows
