"""
Domain payload models and the store context

The StoreContext owns one DomainStore per resource domain and is passed
explicitly to the synchronizers and the explorer core.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from cache import DomainStore, Observer
from libra_client import AccountResource, Transaction
from views import ValidatorGrade
from vouching import VouchEntry

# Domain names
CHAIN_STATS = "chain_stats"
TRANSACTIONS = "transactions"
TRANSACTION = "transaction"
ACCOUNT = "account"
ACCOUNT_OVERLAY = "account_overlay"
VOUCHING = "vouching"
EPOCH = "epoch"
DONATIONS = "donations"
SUPPLY = "supply"
COMMUNITY_WALLETS = "community_wallets"

ALL_DOMAINS = (
    CHAIN_STATS,
    TRANSACTIONS,
    TRANSACTION,
    ACCOUNT,
    ACCOUNT_OVERLAY,
    VOUCHING,
    EPOCH,
    DONATIONS,
    SUPPLY,
    COMMUNITY_WALLETS,
)


# ==================== PAYLOAD MODELS ====================


@dataclass
class TransactionList:
    """Latest transactions, newest version first"""

    items: List[Transaction]
    limit: int


@dataclass
class AccountState:
    """Base account with its balance view merged in"""

    address: str
    balance: int
    sequence_number: int
    resources: List[AccountResource]
    unlocked_balance: Optional[int] = None
    total_balance: Optional[int] = None
    transactions: List[Transaction] = field(default_factory=list)


@dataclass
class ValidatorStatus:
    current_bid: int = 0
    grade: ValidatorGrade = field(default_factory=ValidatorGrade)
    jail_reputation: int = 0
    buddies_jailed: int = 0


@dataclass
class CommunityWalletStatus:
    is_authorized: bool = False
    is_reauth_proposed: bool = False
    is_init: bool = False
    within_authorize_window: bool = False
    veto_tally: int = 0


@dataclass
class AccountOverlay:
    """Derived facts about an address, merged with the account on read"""

    is_founder: bool = False
    has_friends: bool = False
    vouch_score: float = 0.0
    voucher_score_valid: bool = False
    activity: Dict[str, Any] = field(default_factory=dict)
    is_validator: bool = False
    validator: Optional[ValidatorStatus] = None
    is_community_wallet: bool = False
    community_wallet: Optional[CommunityWalletStatus] = None


@dataclass
class VouchingData:
    """Raw vouch edges; expiry is computed on read"""

    given: List[VouchEntry]
    received: List[VouchEntry]
    page_rank_score: int = 0
    current_epoch: int = 0


@dataclass
class EpochData:
    bidders: List[str]
    max_seats: int = 0
    filled_seats: int = 0


@dataclass
class DonationsData:
    is_donor_voice: bool = False
    received: List[Dict[str, Any]] = field(default_factory=list)
    made: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class CommunityWallet:
    address: str
    name: str
    balance: int = 0
    is_authorized: bool = False
    is_reauth_proposed: bool = False


@dataclass
class CommunityWalletList:
    wallets: List[CommunityWallet]


# ==================== STORE CONTEXT ====================


class StoreContext:
    """Holds the DomainStore of every domain"""

    def __init__(self, domains=ALL_DOMAINS):
        self.stores: Dict[str, DomainStore] = {name: DomainStore(name) for name in domains}

    def store(self, domain: str) -> DomainStore:
        try:
            return self.stores[domain]
        except KeyError:
            raise KeyError(f"Unknown domain: {domain}") from None

    def __contains__(self, domain: str) -> bool:
        return domain in self.stores

    def subscribe_all(self, callback: Observer) -> Callable[[], None]:
        """Observe every domain; returns a function removing all subscriptions"""
        removers = [store.subscribe(callback) for store in self.stores.values()]

        def unsubscribe() -> None:
            for remove in removers:
                remove()

        return unsubscribe

    def get_stats(self) -> Dict[str, dict]:
        return {name: store.get_stats() for name, store in self.stores.items()}
