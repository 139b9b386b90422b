"""
Explorer core
Wires stores, SDK session and synchronizers, and exposes the read/refresh surface
"""

import asyncio
import logging
from dataclasses import asdict, is_dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from cache import FreshnessPolicy, Observer, monotonic_ms
from chain_metrics import block_time_from_transactions
from config import config
from domains import build_synchronizers
from errors import InvalidAddressError
from sdk_facade import LibraSdk, SdkFacade, SdkSession
from stores import (
    ACCOUNT,
    ACCOUNT_OVERLAY,
    CHAIN_STATS,
    TRANSACTIONS,
    VOUCHING,
    StoreContext,
)
from synchronizer import DomainSynchronizer, ReadResult
from views import LedgerViews
from vouching import classified_view, count_active

logger = logging.getLogger(__name__)

APP_STATES = ("active", "background", "inactive")


class UnknownDomainError(KeyError):
    """No synchronizer is registered for the requested domain"""


def serialize(value: Any) -> Any:
    """Convert payloads (dataclasses, enums, containers) to JSON-ready values"""
    if is_dataclass(value) and not isinstance(value, type):
        return serialize(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [serialize(v) for v in value]
    return value


class ExplorerCore:
    """
    Composition root of the sync core.

    Everything is constructed here and injected; nothing reads global
    stores. Consumers only use read(), refresh() and the lifecycle hooks.
    """

    def __init__(
        self,
        sdk: SdkFacade,
        cfg=config,
        clock: Callable[[], int] = monotonic_ms,
        context: Optional[StoreContext] = None,
    ):
        self.cfg = cfg
        self.clock = clock
        self.context = context or StoreContext()
        self.session = SdkSession.from_config(sdk, cfg, clock=clock)
        self.policy = FreshnessPolicy.from_config(cfg)
        self.views = LedgerViews(sdk, cfg.OL_FRAMEWORK)
        self.synchronizers: Dict[str, DomainSynchronizer] = build_synchronizers(
            self.context, self.session, self.policy, self.views, cfg, clock=clock
        )
        self.app_state = "active"
        self.session.on_ready(self._on_session_ready)

    @classmethod
    def from_config(cls, cfg=config) -> "ExplorerCore":
        return cls(LibraSdk.from_config(cfg), cfg)

    # ==================== SESSION ====================

    async def start(self) -> bool:
        """Initialize the SDK session with bounded retries"""
        return await self.session.initialize()

    async def reinitialize(self) -> bool:
        return await self.session.reinitialize()

    def stop(self) -> None:
        for sync in self.synchronizers.values():
            sync.stop()

    def clear(self) -> None:
        """Drop cached data for every domain, e.g. after switching network"""
        for sync in self.synchronizers.values():
            sync.clear()

    def _on_session_ready(self) -> None:
        for sync in self.synchronizers.values():
            sync.on_session_ready()

    @property
    def domains(self) -> List[str]:
        return list(self.synchronizers)

    def synchronizer(self, domain: str) -> DomainSynchronizer:
        try:
            return self.synchronizers[domain]
        except KeyError:
            raise UnknownDomainError(domain) from None

    # ==================== READ SURFACE ====================

    def _is_placeholder(self, result: ReadResult) -> bool:
        if result.payload is not None:
            return False
        elapsed = self.session.ms_since_ready()
        return elapsed is not None and elapsed > self.cfg.READY_PLACEHOLDER_MS

    def read(self, domain: str, key: Optional[str] = None) -> ReadResult:
        """
        Current state of (domain, key).

        is_placeholder is set when the session has been ready longer than
        READY_PLACEHOLDER_MS and the entry still has no payload.
        """
        result = self.synchronizer(domain).read(key)
        return replace(result, is_placeholder=self._is_placeholder(result))

    def read_account(self, address: str) -> ReadResult:
        """Account entry with the overlay merged into its payload"""
        base = self.read(ACCOUNT, address)
        if base.payload is None:
            return base
        overlay = self.synchronizer(ACCOUNT_OVERLAY).read(address)
        payload = serialize(base.payload)
        payload["overlay"] = serialize(overlay.payload) if overlay.payload is not None else None
        return replace(base, payload=payload)

    def current_epoch(self) -> int:
        """Epoch from the cached ledger info, 0 when unknown"""
        ledger = self.synchronizer(CHAIN_STATS).read().payload
        return getattr(ledger, "epoch", 0) or 0

    def read_vouches(self, address: str) -> ReadResult:
        """Vouching entry with expiry status computed against the current epoch"""
        base = self.read(VOUCHING, address)
        data = base.payload
        if data is None:
            return base

        epoch = max(self.current_epoch(), data.current_epoch)
        window = self.cfg.VOUCH_EXPIRY_WINDOW
        threshold = self.cfg.VOUCH_WARNING_THRESHOLD
        payload = {
            "current_epoch": epoch,
            "page_rank_score": data.page_rank_score,
            "given": classified_view(data.given, "target", epoch, window, threshold),
            "received": classified_view(data.received, "voucher", epoch, window, threshold),
            "active_given": count_active(data.given, epoch, window, threshold),
            "active_received": count_active(data.received, epoch, window, threshold),
        }
        return replace(base, payload=payload)

    def block_time_ms(self) -> Optional[float]:
        payload = self.synchronizer(TRANSACTIONS).read().payload
        if payload is None:
            return None
        return block_time_from_transactions(payload.items)

    def subscribe(self, callback: Observer, domain: Optional[str] = None) -> Callable[[], None]:
        """Observe store writes of one domain, or all domains"""
        if domain is None:
            return self.context.subscribe_all(callback)
        return self.synchronizer(domain).store.subscribe(callback)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "session": {
                "ready": self.session.is_ready,
                "attempts": self.session.attempts,
                "last_error": str(self.session.last_error) if self.session.last_error else None,
            },
            "app_state": self.app_state,
            "stores": self.context.get_stats(),
            "active": {d: s.active_keys for d, s in self.synchronizers.items() if s.active_keys},
        }

    # ==================== REFRESH & LIFECYCLE ====================

    async def refresh(self, domain: str, key: Optional[str] = None, force: bool = False) -> bool:
        return await self.synchronizer(domain).refresh(key, force=force)

    async def load_more_transactions(self) -> bool:
        sync = self.synchronizer(TRANSACTIONS)
        return await sync.load_more()

    def on_become_visible(self, domain: str, key: Optional[str] = None) -> str:
        """Start polling; returns the canonical key. Raises InvalidAddressError."""
        return self.synchronizer(domain).on_become_visible(key)

    def on_become_hidden(self, domain: str, key: Optional[str] = None) -> None:
        try:
            self.synchronizer(domain).on_become_hidden(key)
        except InvalidAddressError:
            logger.debug(f"Ignoring hide for invalid key {domain}/{key}")

    async def set_app_state(self, state: str) -> None:
        """Track app lifecycle; resuming from background forces a refresh of active keys"""
        if state not in APP_STATES:
            raise ValueError(f"Unknown app state: {state}")

        previous, self.app_state = self.app_state, state
        if state == "active" and previous in ("background", "inactive"):
            logger.info("App returned to foreground, refreshing active data")
            await asyncio.gather(
                *(sync.on_app_foreground() for sync in self.synchronizers.values())
            )
