"""
Shared fixtures: an in-memory SDK facade and a controllable clock
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from addresses import normalize_address
from config import TestConfig
from libra_client import Account, AccountResource, LedgerInfo, Transaction, TransactionDetail
from sdk_facade import SdkFacade

ALICE = normalize_address("0xa11ce")
BOB = normalize_address("0xb0b")
CAROL = normalize_address("0xca401")


def make_ledger(epoch: int = 100, version: int = 5000) -> LedgerInfo:
    return LedgerInfo(
        chain_id="1",
        epoch=epoch,
        block_height=version // 2,
        ledger_version=version,
        ledger_timestamp="1700000000000000",
    )


def make_transaction(version: int, sender: str = ALICE, timestamp_usecs: Optional[int] = None) -> Transaction:
    if timestamp_usecs is None:
        timestamp_usecs = 1700000000000000 + version * 1000
    return Transaction(
        hash=f"0x{version:064x}",
        version=version,
        sender=sender,
        sequence_number=version % 10,
        timestamp=str(timestamp_usecs),
        status="success",
        function="0x1::ol_account::transfer",
        block_height=version,
    )


def make_account(address: str = ALICE, balance: int = 1000) -> Account:
    return Account(
        address=address,
        balance=balance,
        sequence_number=7,
        resources=[
            AccountResource(
                type="0x1::coin::CoinStore<0x1::libra_coin::LibraCoin>",
                data={"coin": {"value": str(balance)}},
            )
        ],
    )


class FakeSdk(SdkFacade):
    """
    Scriptable facade.

    Results may be plain values, exceptions (raised) or callables (called
    with the query arguments, their result resolved again). Set hold() to
    make every call wait until release().
    """

    def __init__(self):
        self.is_ready = False
        self.last_error = None
        self.connect_failures = 0
        self.ledger: Any = make_ledger()
        self.transactions: Any = [make_transaction(v) for v in range(5010, 4990, -1)]
        self.details: Dict[str, Any] = {}
        self.accounts: Dict[str, Any] = {}
        self.view_results: Dict[str, Any] = {}
        self.view_default: Any = None
        self.names: Any = {}
        self.account_transactions: Any = []
        self.calls: List[tuple] = []
        self._gate: Optional[asyncio.Event] = None

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    def count(self, method: str, function: Optional[str] = None) -> int:
        return sum(
            1 for c in self.calls
            if c[0] == method and (function is None or c[1] == function)
        )

    async def _answer(self, method: str, value: Any, *args) -> Any:
        self.calls.append((method,) + args)
        gate = self._gate
        if gate is not None:
            await gate.wait()
        while callable(value) and not isinstance(value, type):
            value = value(*args)
        if isinstance(value, BaseException):
            raise value
        return value

    async def connect(self) -> None:
        self.calls.append(("connect",))
        if self.connect_failures > 0:
            self.connect_failures -= 1
            self.last_error = ConnectionError("connection refused")
            raise self.last_error
        self.is_ready = True
        self.last_error = None

    async def view(self, function: str, type_args: List[str], args: List[Any]) -> Any:
        return await self._answer("view", self.view_results.get(function, self.view_default), function, tuple(map(str, args)))

    async def get_account(self, address: str) -> Optional[Account]:
        return await self._answer("get_account", self.accounts.get(address), address)

    async def get_transactions(self, limit: int) -> List[Transaction]:
        result = await self._answer("get_transactions", self.transactions, limit)
        return result[:limit]

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[TransactionDetail]:
        return await self._answer("get_transaction_by_hash", self.details.get(tx_hash), tx_hash)

    async def get_ledger_info(self) -> LedgerInfo:
        return await self._answer("get_ledger_info", self.ledger)

    async def get_account_transactions(self, address: str, limit: int) -> List[Transaction]:
        return await self._answer("get_account_transactions", self.account_transactions, address, limit)

    async def get_community_wallet_names(self) -> Dict[str, str]:
        return await self._answer("get_community_wallet_names", self.names)


class FakeClock:
    """Monotonic millisecond clock advanced by hand"""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def fake_sdk():
    return FakeSdk()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_config():
    return TestConfig
