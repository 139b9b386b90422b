"""
Per-domain synchronizers
Chain stats, transactions, accounts and the derived governance views
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from addresses import is_valid_address_format, normalize_address, normalize_transaction_hash
from cache import FreshnessPolicy, ResourceClass, monotonic_ms
from errors import FetchError, InvalidAddressError, NotFoundError
from sdk_facade import SdkSession
from stores import (
    ACCOUNT,
    ACCOUNT_OVERLAY,
    CHAIN_STATS,
    COMMUNITY_WALLETS,
    DONATIONS,
    EPOCH,
    SUPPLY,
    TRANSACTION,
    TRANSACTIONS,
    VOUCHING,
    AccountOverlay,
    AccountState,
    CommunityWallet,
    CommunityWalletList,
    CommunityWalletStatus,
    DonationsData,
    EpochData,
    StoreContext,
    TransactionList,
    ValidatorStatus,
    VouchingData,
)
from synchronizer import DomainSynchronizer, SubQuery, fan_out
from views import Balance, LedgerViews, SupplyStats, ValidatorGrade
from vouching import VouchEntry

logger = logging.getLogger(__name__)

DEFAULT_WALLET_NAME = "Community Wallet"


class AddressKeyed:
    """Mixin for domains keyed by account address"""

    def canonical_key(self, key: Optional[str]) -> str:
        if not key or not is_valid_address_format(key):
            raise InvalidAddressError(str(key))
        return normalize_address(key)


class ViewSynchronizer(DomainSynchronizer):
    """Synchronizer that issues typed view calls"""

    def __init__(self, store, session: SdkSession, policy: FreshnessPolicy, views: LedgerViews, **kwargs):
        super().__init__(store, session, policy, **kwargs)
        self.views = views


# ==================== CHAIN HEAD ====================


class ChainStatsSynchronizer(DomainSynchronizer):
    """Ledger info: chain id, epoch, block height, version and timestamp"""

    domain = CHAIN_STATS
    resource_class = ResourceClass.BLOCK_INFO

    def sub_queries(self, key: str) -> List[SubQuery]:
        return [SubQuery("ledger", self.sdk.get_ledger_info, primary=True)]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> Any:
        return values["ledger"]


class TransactionsSynchronizer(DomainSynchronizer):
    """Latest transactions with a growable page size"""

    domain = TRANSACTIONS
    resource_class = ResourceClass.TRANSACTIONS

    def __init__(
        self,
        store,
        session: SdkSession,
        policy: FreshnessPolicy,
        default_limit: int = 25,
        increment: int = 25,
        max_limit: int = 100,
        **kwargs,
    ):
        super().__init__(store, session, policy, **kwargs)
        self.limit = default_limit
        self.increment = increment
        self.max_limit = max_limit
        self._resize_pending = False

    def sub_queries(self, key: str) -> List[SubQuery]:
        limit = self.limit

        async def latest():
            transactions = await self.sdk.get_transactions(limit)
            items = sorted(transactions, key=lambda tx: tx.version, reverse=True)
            return TransactionList(items=items, limit=limit)

        return [SubQuery("transactions", latest, primary=True)]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> TransactionList:
        return values["transactions"]

    async def refresh(self, key: Optional[str] = None, force: bool = False) -> bool:
        refreshed = await super().refresh(key, force=force)
        if self._resize_pending and not self.entry().is_loading:
            self._resize_pending = False
            logger.debug(f"Refetching transactions at new size {self.limit}")
            return await super().refresh(key, force=True) or refreshed
        return refreshed

    async def set_limit(self, limit: int) -> bool:
        """
        Change the page size; a changed size forces a refresh.

        While a fetch is in flight the new size is queued and fetched as soon
        as that fetch settles.
        """
        limit = max(1, min(limit, self.max_limit))
        if limit == self.limit:
            return False
        self.limit = limit
        if self.entry().is_loading:
            logger.debug(f"Transaction fetch in flight, size {limit} queued")
            self._resize_pending = True
            return True
        return await self.refresh(force=True)

    async def load_more(self) -> bool:
        if self.limit >= self.max_limit:
            logger.debug("Transaction list already at maximum size")
            return False
        return await self.set_limit(self.limit + self.increment)


class TransactionDetailSynchronizer(DomainSynchronizer):
    """Single transaction by hash. Committed transactions never change."""

    domain = TRANSACTION
    resource_class = ResourceClass.TRANSACTION_DETAIL

    def canonical_key(self, key: Optional[str]) -> str:
        normalized = normalize_transaction_hash(key)
        if not normalized:
            raise InvalidAddressError(str(key), kind="transaction hash")
        return normalized

    def sub_queries(self, key: str) -> List[SubQuery]:
        async def detail():
            tx = await self.sdk.get_transaction_by_hash(key)
            if tx is None:
                raise NotFoundError(f"Transaction not found: {key}")
            return tx

        return [SubQuery("transaction", detail, primary=True)]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> Any:
        return values["transaction"]


# ==================== ACCOUNTS ====================


class AccountSynchronizer(AddressKeyed, ViewSynchronizer):
    """
    Account base state.

    The account lookup is primary; the balance view and the sent
    transactions are secondary and default when they fail. All three land
    in the store in one write.
    """

    domain = ACCOUNT
    resource_class = ResourceClass.ACCOUNT

    def __init__(self, *args, transactions_limit: int = 25, **kwargs):
        super().__init__(*args, **kwargs)
        self.transactions_limit = transactions_limit

    def sub_queries(self, key: str) -> List[SubQuery]:
        async def account():
            result = await self.sdk.get_account(key)
            if result is None:
                raise NotFoundError(f"Account not found: {key}")
            return result

        async def transactions():
            return await self.sdk.get_account_transactions(key, self.transactions_limit)

        return [
            SubQuery("account", account, primary=True),
            SubQuery("balance", lambda: self.views.balance(key), default=None),
            SubQuery("transactions", transactions, default=None),
        ]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> AccountState:
        account = values["account"]
        balance: Optional[Balance] = values["balance"]
        transactions = values["transactions"]
        if transactions is None:
            transactions = previous.transactions if isinstance(previous, AccountState) else []

        return AccountState(
            address=account.address,
            balance=balance.total if balance is not None else account.balance,
            sequence_number=account.sequence_number,
            resources=account.resources,
            unlocked_balance=balance.unlocked if balance is not None else None,
            total_balance=balance.total if balance is not None else None,
            transactions=transactions,
        )


class AccountOverlaySynchronizer(AddressKeyed, ViewSynchronizer):
    """
    Founder, vouch, activity, validator and community wallet facts.

    Membership is resolved first (validator set, donor voice registry).
    Validator and community wallet queries only run for members.
    """

    domain = ACCOUNT_OVERLAY
    resource_class = ResourceClass.AGGREGATES

    def sub_queries(self, key: str) -> List[SubQuery]:
        return [
            SubQuery("is_founder", lambda: self.views.is_founder(key), default=False),
            SubQuery("has_friends", lambda: self.views.has_friends(key), default=False),
            SubQuery("vouch_score", lambda: self.views.vouch_score(key), default=0.0),
            SubQuery("voucher_score_valid", lambda: self.views.voucher_score_valid(key), default=False),
            SubQuery("activity", lambda: self.views.activity(key), default={}),
            SubQuery("validators", self.views.current_validators, default=[]),
            SubQuery("is_donor_voice", lambda: self.views.is_donor_voice(key), default=False),
        ]

    def validator_queries(self, key: str) -> List[SubQuery]:
        return [
            SubQuery("current_bid", lambda: self.views.current_bid(key), default=0),
            SubQuery("grade", lambda: self.views.validator_grade(key), default=ValidatorGrade()),
            SubQuery("jail_reputation", lambda: self.views.jail_reputation(key), default=0),
            SubQuery("buddies_jailed", lambda: self.views.buddies_jailed(key), default=0),
        ]

    def community_wallet_queries(self, key: str) -> List[SubQuery]:
        return [
            SubQuery("is_authorized", lambda: self.views.is_authorized(key), default=False),
            SubQuery("is_reauth_proposed", lambda: self.views.is_reauth_proposed(key), default=False),
            SubQuery("is_init", lambda: self.views.community_wallet_init(key), default=False),
            SubQuery(
                "within_authorize_window",
                lambda: self.views.within_authorize_window(key),
                default=False,
            ),
            SubQuery("veto_tally", lambda: self.views.veto_tally(key), default=0),
        ]

    async def fetch(self, key: str, previous: Any) -> AccountOverlay:
        first_tier = await fan_out(self.sub_queries(key))
        error = first_tier.failure_message()
        if error is not None:
            raise FetchError(error)
        values = first_tier.values

        is_validator = key in values["validators"]
        is_community_wallet = bool(values["is_donor_voice"])

        validator = None
        if is_validator:
            queries = self.validator_queries(key)
            v = (await fan_out(queries)).values
            validator = ValidatorStatus(
                current_bid=v["current_bid"],
                grade=v["grade"],
                jail_reputation=v["jail_reputation"],
                buddies_jailed=v["buddies_jailed"],
            )

        community_wallet = None
        if is_community_wallet:
            c = (await fan_out(self.community_wallet_queries(key))).values
            community_wallet = CommunityWalletStatus(
                is_authorized=c["is_authorized"],
                is_reauth_proposed=c["is_reauth_proposed"],
                is_init=c["is_init"],
                within_authorize_window=c["within_authorize_window"],
                veto_tally=c["veto_tally"],
            )

        return AccountOverlay(
            is_founder=values["is_founder"],
            has_friends=values["has_friends"],
            vouch_score=values["vouch_score"],
            voucher_score_valid=values["voucher_score_valid"],
            activity=values["activity"],
            is_validator=is_validator,
            validator=validator,
            is_community_wallet=is_community_wallet,
            community_wallet=community_wallet,
        )


# ==================== AGGREGATES ====================


class VouchingSynchronizer(AddressKeyed, ViewSynchronizer):
    """Outbound and inbound vouches with the epoch they were read at"""

    domain = VOUCHING
    resource_class = ResourceClass.AGGREGATES

    def sub_queries(self, key: str) -> List[SubQuery]:
        async def epoch():
            return (await self.sdk.get_ledger_info()).epoch

        return [
            SubQuery("given", lambda: self.views.given_vouches(key), primary=True),
            SubQuery("received", lambda: self.views.received_vouches(key), primary=True),
            SubQuery("page_rank", lambda: self.views.page_rank_score(key), default=0),
            SubQuery("epoch", epoch, default=0),
        ]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> VouchingData:
        given = [
            VouchEntry(voucher=key, target=normalize_address(str(target)), epoch_given=_int(epoch))
            for target, epoch in values["given"].pairs()
        ]
        received = [
            VouchEntry(voucher=normalize_address(str(voucher)), target=key, epoch_given=_int(epoch))
            for voucher, epoch in values["received"].pairs()
        ]
        epoch = values["epoch"]
        if not epoch and isinstance(previous, VouchingData):
            epoch = previous.current_epoch
        return VouchingData(
            given=given,
            received=received,
            page_rank_score=values["page_rank"],
            current_epoch=epoch,
        )


class EpochSynchronizer(ViewSynchronizer):
    """Validator auction state for the coming epoch boundary"""

    domain = EPOCH
    resource_class = ResourceClass.AGGREGATES

    def sub_queries(self, key: str) -> List[SubQuery]:
        return [
            SubQuery("bidders", self.views.bidders, default=[]),
            SubQuery("max_seats", self.views.max_seats, default=0),
            SubQuery("filled_seats", self.views.filled_seats, default=0),
        ]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> EpochData:
        return EpochData(
            bidders=values["bidders"],
            max_seats=values["max_seats"],
            filled_seats=values["filled_seats"],
        )


class SupplySynchronizer(ViewSynchronizer):
    domain = SUPPLY
    resource_class = ResourceClass.AGGREGATES

    def sub_queries(self, key: str) -> List[SubQuery]:
        return [SubQuery("supply", self.views.supply_stats, primary=True)]

    def merge(self, key: str, values: Dict[str, Any], previous: Any) -> SupplyStats:
        return values["supply"]


class DonationsSynchronizer(AddressKeyed, ViewSynchronizer):
    """
    Donations received by a donor voice wallet, or made by a regular account.

    Membership is checked first and decides which list is fetched.
    """

    domain = DONATIONS
    resource_class = ResourceClass.AGGREGATES

    async def fetch(self, key: str, previous: Any) -> DonationsData:
        membership = await fan_out(
            [SubQuery("is_donor_voice", lambda: self.views.is_donor_voice(key), default=False)]
        )
        is_donor_voice = membership.values["is_donor_voice"]

        if is_donor_voice:
            query = SubQuery("received", lambda: self.views.donations_received(key), primary=True)
        else:
            query = SubQuery("made", lambda: self.views.donations_made(key), primary=True)

        outcome = await fan_out([query])
        error = outcome.failure_message()
        if error is not None:
            raise FetchError(error)

        return DonationsData(
            is_donor_voice=is_donor_voice,
            received=outcome.values.get("received", []),
            made=outcome.values.get("made", []),
        )


class CommunityWalletsSynchronizer(ViewSynchronizer):
    """
    Registered community wallets with names, balances and authorization.

    The registry is primary. When it is empty the published name list is
    used as the wallet set. Wallets whose account lookup fails are skipped.
    """

    domain = COMMUNITY_WALLETS
    resource_class = ResourceClass.AGGREGATES

    def sub_queries(self, key: str) -> List[SubQuery]:
        return [
            SubQuery("registry", self.views.root_registry, primary=True),
            SubQuery("names", self.sdk.get_community_wallet_names, default={}),
        ]

    def wallet_queries(self, address: str) -> List[SubQuery]:
        async def account():
            result = await self.sdk.get_account(address)
            if result is None:
                raise NotFoundError(f"Account not found: {address}")
            return result

        return [
            SubQuery("account", account, primary=True),
            SubQuery("is_authorized", lambda: self.views.is_authorized(address), default=False),
            SubQuery("is_reauth_proposed", lambda: self.views.is_reauth_proposed(address), default=False),
        ]

    async def fetch_wallet(self, address: str, names: Dict[str, str]) -> Optional[CommunityWallet]:
        outcome = await fan_out(self.wallet_queries(address))
        if outcome.failure_message() is not None:
            logger.warning(f"Skipping community wallet {address}: {outcome.failure_message()}")
            return None
        values = outcome.values
        return CommunityWallet(
            address=address,
            name=names.get(address, DEFAULT_WALLET_NAME),
            balance=values["account"].balance,
            is_authorized=values["is_authorized"],
            is_reauth_proposed=values["is_reauth_proposed"],
        )

    async def fetch(self, key: str, previous: Any) -> CommunityWalletList:
        first = await fan_out(self.sub_queries(key))
        error = first.failure_message()
        names: Dict[str, str] = first.values["names"]
        if error is not None and not names:
            raise FetchError(error)

        addresses = first.values["registry"] or sorted(names)
        wallet_queries = [
            SubQuery(address, lambda address=address: self.fetch_wallet(address, names))
            for address in addresses
        ]
        outcome = await fan_out(wallet_queries)
        wallets = [w for w in outcome.values.values() if w is not None]
        wallets.sort(key=lambda w: (w.name, w.address))
        return CommunityWalletList(wallets=wallets)


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ==================== REGISTRY ====================


def build_synchronizers(
    context: StoreContext,
    session: SdkSession,
    policy: FreshnessPolicy,
    views: LedgerViews,
    cfg,
    clock: Callable[[], int] = monotonic_ms,
) -> Dict[str, DomainSynchronizer]:
    """Create one synchronizer per domain, each claiming its store's writer"""

    def make(cls, domain: str, interval: Optional[int], **kwargs) -> DomainSynchronizer:
        if issubclass(cls, ViewSynchronizer):
            kwargs["views"] = views
        return cls(
            context.store(domain),
            session,
            policy,
            clock=clock,
            poll_interval_ms=interval,
            **kwargs,
        )

    aggregates = cfg.POLL_AGGREGATES
    synchronizers = [
        make(ChainStatsSynchronizer, CHAIN_STATS, cfg.POLL_CHAIN_STATS),
        make(
            TransactionsSynchronizer,
            TRANSACTIONS,
            cfg.POLL_TRANSACTIONS,
            default_limit=cfg.TRANSACTIONS_DEFAULT_LIMIT,
            increment=cfg.TRANSACTIONS_INCREMENT,
            max_limit=cfg.TRANSACTIONS_MAX_LIMIT,
        ),
        make(TransactionDetailSynchronizer, TRANSACTION, None),
        make(
            AccountSynchronizer,
            ACCOUNT,
            cfg.POLL_ACCOUNT,
            transactions_limit=cfg.TRANSACTIONS_DEFAULT_LIMIT,
        ),
        make(AccountOverlaySynchronizer, ACCOUNT_OVERLAY, aggregates),
        make(VouchingSynchronizer, VOUCHING, aggregates),
        make(EpochSynchronizer, EPOCH, aggregates),
        make(DonationsSynchronizer, DONATIONS, aggregates),
        make(SupplySynchronizer, SUPPLY, aggregates),
        make(CommunityWalletsSynchronizer, COMMUNITY_WALLETS, aggregates),
    ]
    return {s.domain: s for s in synchronizers}
