"""
SDK facade and session lifecycle

SdkFacade is the async contract the synchronizers depend on. LibraSdk
implements it over the blocking LibraClient, and SdkSession owns
initialization with bounded retries.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from cache import monotonic_ms
from errors import ConnectivityError
from libra_client import Account, LedgerInfo, LibraClient, Transaction, TransactionDetail

logger = logging.getLogger(__name__)


class SdkFacade(ABC):
    """Raw ledger fetch primitives. Any call may raise on transport failure."""

    is_ready: bool = False
    last_error: Optional[Exception] = None

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection; raise if the ledger is unreachable"""

    @abstractmethod
    async def view(self, function: str, type_args: List[str], args: List[Any]) -> Any:
        ...

    @abstractmethod
    async def get_account(self, address: str) -> Optional[Account]:
        ...

    @abstractmethod
    async def get_transactions(self, limit: int) -> List[Transaction]:
        ...

    @abstractmethod
    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[TransactionDetail]:
        ...

    @abstractmethod
    async def get_ledger_info(self) -> LedgerInfo:
        ...

    async def get_account_transactions(self, address: str, limit: int) -> List[Transaction]:
        """Transactions sent by address. Facades without an index return []."""
        return []

    async def get_community_wallet_names(self) -> Dict[str, str]:
        return {}


class LibraSdk(SdkFacade):
    """Facade over LibraClient; blocking calls run in worker threads"""

    def __init__(self, client: LibraClient):
        self.client = client
        self.is_ready = False
        self.last_error = None

    @classmethod
    def from_config(cls, cfg) -> "LibraSdk":
        client = LibraClient(
            cfg.LIBRA_RPC_URL,
            timeout=cfg.REQUEST_TIMEOUT,
            retry_count=cfg.HTTP_RETRY_COUNT,
            names_url=cfg.COMMUNITY_WALLET_NAMES_URL,
        )
        return cls(client)

    async def _call(self, method: Callable, *args, **kwargs) -> Any:
        return await asyncio.to_thread(method, *args, **kwargs)

    async def connect(self) -> None:
        try:
            info = await self._call(self.client.get_ledger_info)
        except Exception as e:
            self.is_ready = False
            self.last_error = e
            raise
        self.is_ready = True
        self.last_error = None
        logger.info(f"Connected to {self.client.rpc_url} (chain {info.chain_id}, epoch {info.epoch})")

    async def view(self, function: str, type_args: List[str], args: List[Any]) -> Any:
        return await self._call(self.client.view, function, type_args, args)

    async def get_account(self, address: str) -> Optional[Account]:
        return await self._call(self.client.get_account, address)

    async def get_transactions(self, limit: int) -> List[Transaction]:
        return await self._call(self.client.get_transactions, limit)

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[TransactionDetail]:
        return await self._call(self.client.get_transaction_by_hash, tx_hash)

    async def get_ledger_info(self) -> LedgerInfo:
        return await self._call(self.client.get_ledger_info)

    async def get_account_transactions(self, address: str, limit: int) -> List[Transaction]:
        return await self._call(self.client.get_account_transactions, address, limit)

    async def get_community_wallet_names(self) -> Dict[str, str]:
        return await self._call(self.client.get_community_wallet_names)


class SdkSession:
    """
    Brings an SdkFacade to the ready state.

    The first connection attempt is followed by up to max_retries
    reinitialization attempts spaced by a fixed delay. When all of them
    fail, last_error holds a ConnectivityError until the next
    reinitialize() succeeds.
    """

    def __init__(
        self,
        sdk: SdkFacade,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        retry_on_failure: bool = True,
        clock: Callable[[], int] = monotonic_ms,
    ):
        self.sdk = sdk
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.retry_on_failure = retry_on_failure
        self.clock = clock
        self.ready_at: Optional[int] = None
        self.attempts = 0
        self._last_error: Optional[Exception] = None
        self._ready_callbacks: List[Callable[[], None]] = []

    @classmethod
    def from_config(cls, sdk: SdkFacade, cfg, clock: Callable[[], int] = monotonic_ms) -> "SdkSession":
        return cls(
            sdk,
            max_retries=cfg.MAX_RETRIES,
            retry_delay_ms=cfg.RETRY_DELAY_MS,
            retry_on_failure=cfg.RETRY_ON_FAILURE,
            clock=clock,
        )

    @property
    def is_ready(self) -> bool:
        return bool(self.sdk.is_ready) and self.ready_at is not None

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error or self.sdk.last_error

    def on_ready(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback fired every time the session becomes ready"""
        self._ready_callbacks.append(callback)

        def remove() -> None:
            if callback in self._ready_callbacks:
                self._ready_callbacks.remove(callback)

        return remove

    def ms_since_ready(self) -> Optional[int]:
        if self.ready_at is None:
            return None
        return self.clock() - self.ready_at

    async def initialize(self) -> bool:
        """Connect with bounded retries. Returns True once ready."""
        total = 1 + (self.max_retries if self.retry_on_failure else 0)
        error: Optional[Exception] = None

        for attempt in range(1, total + 1):
            self.attempts = attempt
            try:
                await self.sdk.connect()
            except Exception as e:
                error = e
                logger.warning(f"SDK initialization attempt {attempt}/{total} failed: {e}")
                if attempt < total:
                    await asyncio.sleep(self.retry_delay_ms / 1000)
                continue

            self.ready_at = self.clock()
            self._last_error = None
            logger.info(f"SDK ready after {attempt} attempt(s)")
            for callback in list(self._ready_callbacks):
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Ready callback error: {e}")
            return True

        self._last_error = ConnectivityError(total, error)
        logger.error(str(self._last_error))
        return False

    async def reinitialize(self) -> bool:
        """Drop the ready state and run initialization again"""
        self.ready_at = None
        self.sdk.is_ready = False
        return await self.initialize()
