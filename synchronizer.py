"""
Domain synchronizer engine

A DomainSynchronizer is the only writer of its DomainStore. It decides when
to fetch (staleness policy, forced refresh), keeps one fetch in flight per
key, fans sub-queries out through the SDK facade and commits their merged
result in a single store write. Failures are recorded on the entry and
never raised to callers.

Polling follows visibility: a visible key is fetched immediately once the
SDK session is ready and then on the domain's interval until it is hidden.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from cache import (
    EMPTY_ENTRY,
    SINGLETON_KEY,
    CacheEntry,
    DomainStore,
    FreshnessPolicy,
    ResourceClass,
    monotonic_ms,
)
from errors import FetchError, InvalidAddressError
from sdk_facade import SdkSession

logger = logging.getLogger(__name__)


# ==================== READ RESULT ====================


@dataclass(frozen=True)
class ReadResult:
    """What a consumer sees for one (domain, key)"""

    payload: Any
    is_loading: bool
    error: Optional[str]
    is_stale: bool
    is_placeholder: bool = False
    last_updated: int = 0


# ==================== FAN-OUT / FAN-IN ====================


@dataclass
class SubQuery:
    """
    One independent query of a refresh.

    factory is called once per refresh and must return an awaitable.
    default replaces the value when the query fails.
    """

    name: str
    factory: Callable[[], Awaitable[Any]]
    default: Any = None
    primary: bool = False


@dataclass
class SubResult:
    name: str
    ok: bool
    value: Any = None
    error: Optional[str] = None


class FanOutResult:
    """Settled outcomes of a group of sub-queries"""

    def __init__(self, queries: List[SubQuery], results: Dict[str, SubResult]):
        self.queries = queries
        self.results = results

    @property
    def values(self) -> Dict[str, Any]:
        """Successful values, with defaults in place of failures"""
        return {
            q.name: self.results[q.name].value if self.results[q.name].ok else q.default
            for q in self.queries
        }

    def ok(self, name: str) -> bool:
        return self.results[name].ok

    @property
    def failures(self) -> List[SubResult]:
        return [r for r in self.results.values() if not r.ok]

    def failure_message(self) -> Optional[str]:
        """
        Message of the first failure that fails the whole refresh.

        With primary queries, any failed primary fails the refresh. Without
        them, the refresh fails only when every query failed.
        """
        primaries = [q for q in self.queries if q.primary]
        if primaries:
            for q in primaries:
                if not self.results[q.name].ok:
                    return self.results[q.name].error
            return None

        if self.queries and all(not r.ok for r in self.results.values()):
            return self.results[self.queries[0].name].error
        return None


def _error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


async def fan_out(queries: List[SubQuery]) -> FanOutResult:
    """Run sub-queries concurrently and capture each outcome independently"""
    outcomes = await asyncio.gather(
        *(q.factory() for q in queries), return_exceptions=True
    )

    results: Dict[str, SubResult] = {}
    for query, outcome in zip(queries, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning(f"Sub-query '{query.name}' failed: {outcome}")
            results[query.name] = SubResult(query.name, False, error=_error_message(outcome))
        else:
            results[query.name] = SubResult(query.name, True, value=outcome)
    return FanOutResult(queries, results)


# ==================== DOMAIN SYNCHRONIZER ====================


class DomainSynchronizer:
    """
    Base synchronizer for one domain.

    Subclasses set domain, resource_class and poll_interval_ms, and either
    implement sub_queries() and merge() or override fetch() for flows that
    need more than one round of queries.
    """

    domain: str = ""
    resource_class: Optional[ResourceClass] = None
    poll_interval_ms: Optional[int] = None

    def __init__(
        self,
        store: DomainStore,
        session: SdkSession,
        policy: FreshnessPolicy,
        clock: Callable[[], int] = monotonic_ms,
        poll_interval_ms: Optional[int] = None,
    ):
        self.store = store
        self.writer = store.acquire_writer()
        self.session = session
        self.sdk = session.sdk
        self.policy = policy
        self.clock = clock
        if poll_interval_ms is not None:
            self.poll_interval_ms = poll_interval_ms

        self._visible: Set[str] = set()
        self._timers: Dict[str, asyncio.Task] = {}

    # ---------- subclass hooks ----------

    def canonical_key(self, key: Optional[str]) -> str:
        """Map a caller key to the store key. Singleton domains ignore it."""
        return SINGLETON_KEY

    def sub_queries(self, key: str) -> List[SubQuery]:
        raise NotImplementedError

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> Any:
        raise NotImplementedError

    async def fetch(self, key: str, previous: Any) -> Any:
        """Produce the new payload for key or raise with a failure message"""
        queries = self.sub_queries(key)
        outcome = await fan_out(queries)
        error = outcome.failure_message()
        if error is not None:
            raise FetchError(error)
        return self.merge(key, outcome.values, previous)

    # ---------- read surface ----------

    def entry(self, key: Optional[str] = None) -> CacheEntry:
        try:
            return self.store.get(self.canonical_key(key))
        except InvalidAddressError:
            return EMPTY_ENTRY

    def is_stale(self, key: Optional[str] = None) -> bool:
        return self.policy.is_stale(self.entry(key), self.resource_class, self.clock())

    def read(self, key: Optional[str] = None) -> ReadResult:
        entry = self.entry(key)
        return ReadResult(
            payload=entry.payload,
            is_loading=entry.is_loading,
            error=entry.error,
            is_stale=self.policy.is_stale(entry, self.resource_class, self.clock()),
            last_updated=entry.last_updated,
        )

    # ---------- refresh ----------

    async def refresh(self, key: Optional[str] = None, force: bool = False) -> bool:
        """
        Fetch key if stale or forced.

        Returns True when a fetch ran and committed. Returns False when the
        fetch was skipped (fresh, session not ready, already in flight) or
        failed; failures are stored on the entry.
        """
        try:
            key = self.canonical_key(key)
        except InvalidAddressError as e:
            logger.warning(f"{self.domain}: {e}")
            return False
        entry = self.store.get(key)

        if not force and not self.policy.is_stale(entry, self.resource_class, self.clock()):
            logger.debug(f"{self.domain}/{key} is fresh, skipping fetch")
            return False

        if not self.session.is_ready:
            logger.debug(f"{self.domain}/{key}: SDK not ready, skipping fetch")
            return False

        if not self.writer.begin_fetch(key):
            logger.debug(f"{self.domain}/{key}: fetch already in flight, dropped")
            return False

        try:
            payload = await self.fetch(key, entry.payload)
        except asyncio.CancelledError:
            self.writer.fail(key, "Fetch cancelled")
            raise
        except Exception as e:
            logger.error(f"Error refreshing {self.domain}/{key}: {e}")
            self.writer.fail(key, _error_message(e))
            return False

        self.writer.commit(key, payload, self.clock())
        return True

    # ---------- polling lifecycle ----------

    @property
    def active_keys(self) -> List[str]:
        return sorted(self._visible)

    def on_become_visible(self, key: Optional[str] = None) -> str:
        """Start polling key. Must be called from the event loop thread."""
        key = self.canonical_key(key)
        self._visible.add(key)
        self._arm(key)
        return key

    def on_become_hidden(self, key: Optional[str] = None) -> None:
        """Stop polling key. An in-flight fetch still completes and is stored."""
        key = self.canonical_key(key)
        self._visible.discard(key)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def on_session_ready(self) -> None:
        for key in list(self._visible):
            self._arm(key)

    async def on_app_foreground(self) -> None:
        """Force one refresh of every visible key"""
        if not self._visible:
            return
        await asyncio.gather(*(self.refresh(key, force=True) for key in self.active_keys))

    def clear(self) -> None:
        """Drop cached entries; fetches in flight stay deduplicated"""
        self.writer.clear()

    def stop(self) -> None:
        """Cancel every polling timer"""
        self._visible.clear()
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _arm(self, key: str) -> None:
        if not self.session.is_ready:
            return
        timer = self._timers.get(key)
        if timer is not None and not timer.done():
            return
        self._timers[key] = asyncio.get_running_loop().create_task(self._poll(key))

    async def _poll(self, key: str) -> None:
        # shield keeps a fetch running when the timer is cancelled mid-flight
        await asyncio.shield(self.refresh(key))
        if not self.poll_interval_ms:
            return
        while key in self._visible:
            await asyncio.sleep(self.poll_interval_ms / 1000)
            if key not in self._visible:
                break
            await asyncio.shield(self.refresh(key))
