"""
Open Libra REST Client
Query methods for the ledger REST API (ledger info, transactions, accounts, view functions)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from addresses import normalize_address, normalize_transaction_hash
from errors import InvalidAddressError
from normalizer import ensure_proper_structures, to_int

logger = logging.getLogger(__name__)

COIN_STORE_TYPES = (
    "0x1::coin::CoinStore<0x1::libra_coin::LibraCoin>",
    "CoinStore<",
)

PENDING_TYPES = ("pending_transaction",)


# ==================== DATA MODELS ====================


@dataclass
class LedgerInfo:
    """Chain head snapshot"""

    chain_id: str
    epoch: int
    block_height: int
    ledger_version: int
    ledger_timestamp: str
    oldest_ledger_version: int = 0
    oldest_block_height: int = 0
    node_role: str = ""
    git_hash: str = ""


@dataclass
class Transaction:
    """
    Committed or pending transaction.

    timestamp is the ledger's microsecond string, kept as-is so no precision
    is lost before sorting or display.
    """

    hash: str
    version: int
    sender: str
    sequence_number: int
    timestamp: str
    status: str
    type: str = "unknown"
    function: Optional[str] = None
    block_height: Optional[int] = None
    gas_used: int = 0
    gas_unit_price: int = 0
    vm_status: str = ""


@dataclass
class TransactionDetail(Transaction):
    """Transaction with its events, state changes and payload"""

    events: List[Dict[str, Any]] = field(default_factory=list)
    changes: List[Dict[str, Any]] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AccountResource:
    """Raw Move resource, passed through uninterpreted"""

    type: str
    data: Any


@dataclass
class Account:
    """Account base state"""

    address: str
    balance: int
    sequence_number: int
    resources: List[AccountResource]


# ==================== PARSERS ====================


def _transaction_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    tx_type = raw.get("type") or "unknown"
    if tx_type in PENDING_TYPES:
        status = "pending"
    else:
        status = "success" if raw.get("success") else "failure"

    version = to_int(raw.get("version"))
    block_height = to_int(raw.get("block_height")) or version

    payload = raw.get("payload") or {}
    function = raw.get("function") or (
        payload.get("function") if isinstance(payload, dict) else None
    )

    timestamp = raw.get("timestamp")
    return {
        "hash": raw.get("hash") or "",
        "version": version,
        "sender": raw.get("sender") or "",
        "sequence_number": to_int(raw.get("sequence_number")),
        "timestamp": timestamp if isinstance(timestamp, str) else str(timestamp or "0"),
        "status": status,
        "type": tx_type,
        "function": function or None,
        "block_height": block_height,
        "gas_used": to_int(raw.get("gas_used")),
        "gas_unit_price": to_int(raw.get("gas_unit_price")),
        "vm_status": raw.get("vm_status") or "",
    }


def parse_transaction(raw: Dict[str, Any]) -> Transaction:
    return Transaction(**_transaction_fields(raw))


def parse_transaction_detail(raw: Dict[str, Any]) -> TransactionDetail:
    events = [
        {"type": e.get("type", ""), "data": e.get("data") or {}}
        for e in raw.get("events") or []
    ]
    changes = [
        {
            "type": c.get("type", ""),
            "address": c.get("address", ""),
            "path": c.get("path", ""),
            "data": c.get("data") or {},
        }
        for c in raw.get("changes") or []
    ]
    return TransactionDetail(
        **_transaction_fields(raw),
        events=events,
        changes=changes,
        payload=raw.get("payload") or {},
    )


def parse_ledger_info(raw: Dict[str, Any]) -> LedgerInfo:
    return LedgerInfo(
        chain_id=str(raw.get("chain_id", "")),
        epoch=to_int(raw.get("epoch")),
        block_height=to_int(raw.get("block_height")),
        ledger_version=to_int(raw.get("ledger_version")),
        ledger_timestamp=str(raw.get("ledger_timestamp", "0")),
        oldest_ledger_version=to_int(raw.get("oldest_ledger_version")),
        oldest_block_height=to_int(raw.get("oldest_block_height")),
        node_role=raw.get("node_role", ""),
        git_hash=raw.get("git_hash", ""),
    )


def coin_balance(resources: List[AccountResource]) -> int:
    """Balance from the account's coin store resource, 0 when absent"""
    for resource in resources:
        if not isinstance(resource.type, str):
            continue
        if any(marker in resource.type for marker in COIN_STORE_TYPES):
            data = resource.data if isinstance(resource.data, dict) else {}
            coin = data.get("coin") or {}
            return to_int(coin.get("value"))
    return 0


# ==================== LIBRA CLIENT ====================


class LibraClient:
    """
    Blocking REST client for an Open Libra fullnode

    Thin wrapper over the /v1 REST API; every method issues real HTTP
    requests and raises requests exceptions on transport errors.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: int = 10,
        retry_count: int = 3,
        names_url: Optional[str] = None,
    ):
        """
        Initialize ledger client

        Args:
            rpc_url: REST endpoint including version prefix (e.g. https://host:8080/v1)
            timeout: Request timeout in seconds
            retry_count: Number of retries for 5xx responses
            names_url: JSON document mapping community wallet addresses to names
        """
        self.rpc_url = rpc_url.rstrip("/")
        self.timeout = timeout
        self.names_url = names_url

        # Configure session with retry logic
        self.session = requests.Session()
        retry = Retry(
            total=retry_count, backoff_factor=0.5, status_forcelist=[500, 502, 503, 504]
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _get(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        """Make GET request with error handling"""
        url = f"{self.rpc_url}/{endpoint}" if endpoint else self.rpc_url
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {url} - {e}")
            raise

    def _post(self, endpoint: str, body: Dict[str, Any]) -> Any:
        """Make POST request with error handling"""
        url = f"{self.rpc_url}/{endpoint}"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {url} - {e}")
            raise

    @staticmethod
    def _is_not_found(error: requests.exceptions.RequestException) -> bool:
        response = getattr(error, "response", None)
        return response is not None and response.status_code == 404

    # ==================== LEDGER ====================

    def get_ledger_info(self) -> LedgerInfo:
        """Get current ledger info"""
        return parse_ledger_info(self._get(""))

    def get_transactions(self, limit: int = 25, start: Optional[int] = None) -> List[Transaction]:
        """Get latest transactions, newest first"""
        params: Dict[str, Any] = {"limit": limit}
        if start is not None:
            params["start"] = start
        data = self._get("transactions", params)
        transactions = [parse_transaction(tx) for tx in data or []]
        return sorted(transactions, key=lambda tx: tx.version, reverse=True)

    def get_transaction_by_hash(self, tx_hash: str) -> Optional[TransactionDetail]:
        """Get transaction by hash, None when unknown"""
        normalized = normalize_transaction_hash(tx_hash)
        if not normalized:
            raise InvalidAddressError(tx_hash, kind="transaction hash")
        try:
            return parse_transaction_detail(self._get(f"transactions/by_hash/{normalized}"))
        except requests.exceptions.RequestException as e:
            if self._is_not_found(e):
                return None
            raise

    # ==================== ACCOUNTS ====================

    def get_account_resources(self, address: str) -> List[AccountResource]:
        """Get raw account resources"""
        data = ensure_proper_structures(self._get(f"accounts/{normalize_address(address)}/resources"))
        return [
            AccountResource(type=r.get("type", ""), data=r.get("data"))
            for r in data or []
            if isinstance(r, dict)
        ]

    def get_account(self, address: str) -> Optional[Account]:
        """
        Get account base state

        The balance is read from the coin store resource and the sequence
        number from the account endpoint. Returns None for unknown accounts.
        """
        normalized = normalize_address(address)
        try:
            resources = self.get_account_resources(normalized)
        except requests.exceptions.RequestException as e:
            if self._is_not_found(e):
                return None
            raise

        sequence_number = 0
        try:
            info = self._get(f"accounts/{normalized}")
            sequence_number = to_int(info.get("sequence_number"))
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not get sequence number for {normalized}: {e}")

        return Account(
            address=normalized,
            balance=coin_balance(resources),
            sequence_number=sequence_number,
            resources=resources,
        )

    def get_account_transactions(
        self, address: str, limit: int = 25, start: Optional[int] = None
    ) -> List[Transaction]:
        """
        Get transactions sent by an account

        Falls back to filtering the latest global transactions by sender
        when the account endpoint is unavailable.
        """
        normalized = normalize_address(address)
        params: Dict[str, Any] = {"limit": limit}
        if start is not None:
            params["start"] = start
        try:
            data = self._get(f"accounts/{normalized}/transactions", params)
            if isinstance(data, list):
                return [parse_transaction(tx) for tx in data]
            logger.warning("Unexpected response format for account transactions")
            return []
        except requests.exceptions.RequestException as e:
            logger.warning(f"Account transactions endpoint failed, filtering by sender: {e}")

        recent = self.get_transactions(limit=limit * 2)
        return [
            tx for tx in recent
            if tx.sender and normalize_address(tx.sender) == normalized
        ][:limit]

    # ==================== VIEW FUNCTIONS ====================

    def view(
        self,
        function: str,
        type_arguments: Optional[List[str]] = None,
        arguments: Optional[List[Any]] = None,
    ) -> Any:
        """Execute a read-only Move view function"""
        body = {
            "function": function,
            "type_arguments": type_arguments or [],
            "arguments": arguments or [],
        }
        return self._post("view", body)

    # ==================== METADATA ====================

    def get_community_wallet_names(self) -> Dict[str, str]:
        """Map of canonical address to display name for community wallets"""
        if not self.names_url:
            return {}
        try:
            response = self.session.get(self.names_url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {self.names_url} - {e}")
            raise

        wallets = data.get("communityWallets", {}) if isinstance(data, dict) else {}
        names = {}
        for address, info in wallets.items():
            name = info.get("name") if isinstance(info, dict) else info
            if isinstance(name, str) and name:
                names[normalize_address(address)] = name
        return names
