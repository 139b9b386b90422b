"""
Session cache for the explorer sync core
Immutable cache entries, freshness policy and per-domain stores with observers
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

SINGLETON_KEY = "_"

Observer = Callable[[str, str, "CacheEntry"], None]


@dataclass(frozen=True)
class CacheEntry:
    """
    Cached state for one logical resource.

    Entries are never mutated; every write replaces the whole entry so a
    reader always sees payload, error and last_updated from the same write.
    last_updated is monotonic milliseconds, 0 meaning never fetched.
    """

    payload: Any = None
    is_loading: bool = False
    error: Optional[str] = None
    last_updated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "is_loading": self.is_loading,
            "error": self.error,
            "last_updated": self.last_updated,
        }


EMPTY_ENTRY = CacheEntry()


def monotonic_ms() -> int:
    """Current monotonic clock in milliseconds"""
    return int(time.monotonic() * 1000)


def is_stale(entry: CacheEntry, window: int, now: int) -> bool:
    """True when entry was never fetched or is older than window ms"""
    return entry.last_updated == 0 or now - entry.last_updated > window


# ==================== FRESHNESS POLICY ====================


class ResourceClass(Enum):
    """Resource classes with their own freshness windows"""

    BLOCK_INFO = "block_info"
    TRANSACTIONS = "transactions"
    ACCOUNT = "account"
    AGGREGATES = "aggregates"
    TRANSACTION_DETAIL = "transaction_detail"


class FreshnessPolicy:
    """Per resource class freshness windows in milliseconds"""

    def __init__(
        self,
        windows: Optional[Dict[ResourceClass, int]] = None,
        default_window: int = 30000,
    ):
        self.windows = dict(windows or {})
        self.default_window = default_window

    @classmethod
    def from_config(cls, cfg) -> "FreshnessPolicy":
        return cls(
            windows={
                ResourceClass.BLOCK_INFO: cfg.FRESHNESS_BLOCK_INFO,
                ResourceClass.TRANSACTIONS: cfg.FRESHNESS_TRANSACTIONS,
                ResourceClass.ACCOUNT: cfg.FRESHNESS_ACCOUNT,
                ResourceClass.AGGREGATES: cfg.FRESHNESS_AGGREGATES,
                ResourceClass.TRANSACTION_DETAIL: cfg.FRESHNESS_TRANSACTION_DETAIL,
            },
            default_window=cfg.FRESHNESS_DEFAULT,
        )

    def window_for(self, resource_class: Optional[ResourceClass]) -> int:
        return self.windows.get(resource_class, self.default_window)

    def is_stale(
        self, entry: CacheEntry, resource_class: Optional[ResourceClass], now: int
    ) -> bool:
        return is_stale(entry, self.window_for(resource_class), now)


# ==================== DOMAIN STORE ====================


class StoreWriter:
    """
    The single write handle of a DomainStore.

    Only the synchronizer that claimed the writer may change entries.
    """

    def __init__(self, store: "DomainStore"):
        self._store = store

    @property
    def domain(self) -> str:
        return self._store.domain

    def begin_fetch(self, key: str) -> bool:
        """
        Mark key as loading, keeping its payload.

        Returns False if a fetch is already in flight for key.
        """
        with self._store._lock:
            entry = self._store._entries.get(key, EMPTY_ENTRY)
            if entry.is_loading:
                self._store.stats["dropped"] += 1
                return False
            self._store._entries[key] = replace(entry, is_loading=True)
            self._store.stats["fetches"] += 1
            updated = self._store._entries[key]
        self._store._notify(key, updated)
        return True

    def commit(self, key: str, payload: Any, now: int) -> CacheEntry:
        """Store a successful result in one step, clearing any error"""
        entry = CacheEntry(payload=payload, is_loading=False, error=None, last_updated=now)
        with self._store._lock:
            self._store._entries[key] = entry
            self._store.stats["commits"] += 1
        self._store._notify(key, entry)
        return entry

    def fail(self, key: str, error: str) -> CacheEntry:
        """Record a failed fetch; payload and last_updated are retained"""
        with self._store._lock:
            previous = self._store._entries.get(key, EMPTY_ENTRY)
            entry = replace(previous, is_loading=False, error=error)
            self._store._entries[key] = entry
            self._store.stats["failures"] += 1
        self._store._notify(key, entry)
        return entry

    def clear(self) -> None:
        """
        Drop every entry not currently being fetched.

        Keys with a fetch in flight are reset to a bare loading entry so a
        second fetch for them is still dropped until the first settles.
        """
        with self._store._lock:
            entries = self._store._entries
            dropped = [k for k, e in entries.items() if not e.is_loading]
            for key in dropped:
                del entries[key]
            loading = {key: CacheEntry(is_loading=True) for key in entries}
            entries.update(loading)
        for key in dropped:
            self._store._notify(key, EMPTY_ENTRY)
        for key, entry in loading.items():
            self._store._notify(key, entry)


class DomainStore:
    """In-memory keyed store for one resource domain"""

    def __init__(self, domain: str):
        self.domain = domain
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._key_observers: Dict[str, List[Observer]] = {}
        self._domain_observers: List[Observer] = []
        self._writer: Optional[StoreWriter] = None
        self.stats = {"fetches": 0, "commits": 0, "failures": 0, "dropped": 0}

    def acquire_writer(self) -> StoreWriter:
        """Claim the write handle. A store has exactly one writer."""
        with self._lock:
            if self._writer is not None:
                raise RuntimeError(f"Store '{self.domain}' already has a writer")
            self._writer = StoreWriter(self)
            return self._writer

    # ---------- reads ----------

    def get(self, key: str = SINGLETON_KEY) -> CacheEntry:
        with self._lock:
            return self._entries.get(key, EMPTY_ENTRY)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def snapshot(self) -> Dict[str, CacheEntry]:
        with self._lock:
            return dict(self._entries)

    @property
    def is_loading(self) -> bool:
        """True while any key of the domain is being fetched"""
        with self._lock:
            return any(e.is_loading for e in self._entries.values())

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            for entry in self._entries.values():
                if entry.error:
                    return entry.error
        return None

    @property
    def last_updated(self) -> int:
        with self._lock:
            return max((e.last_updated for e in self._entries.values()), default=0)

    def get_stats(self) -> dict:
        """Get store statistics"""
        with self._lock:
            return {
                "domain": self.domain,
                "size": len(self._entries),
                "loading": sum(1 for e in self._entries.values() if e.is_loading),
                "errors": sum(1 for e in self._entries.values() if e.error),
                "observers": len(self._domain_observers)
                + sum(len(o) for o in self._key_observers.values()),
                **self.stats,
            }

    # ---------- observers ----------

    def subscribe(self, callback: Observer, key: Optional[str] = None) -> Callable[[], None]:
        """
        Register an observer for one key, or the whole domain when key is None.

        Observers are called as callback(domain, key, entry) after each write.
        Returns a function that removes the observer.
        """
        with self._lock:
            if key is None:
                observers = self._domain_observers
            else:
                observers = self._key_observers.setdefault(key, [])
            observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in observers:
                    observers.remove(callback)

        return unsubscribe

    def _notify(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            observers = list(self._key_observers.get(key, [])) + list(
                self._domain_observers
            )

        for callback in observers:
            try:
                callback(self.domain, key, entry)
            except Exception as e:
                logger.error(f"Observer error for {self.domain}/{key}: {e}")
