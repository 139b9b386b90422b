"""
Typed view-function calls

Each helper issues one Move view call through the SDK facade and normalizes
its result. Transport errors propagate to the caller; shape problems decode
to zero values.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from addresses import normalize_address
from normalizer import (
    Shape,
    ensure_proper_structures,
    normalize,
    to_float,
    to_int,
)
from sdk_facade import SdkFacade

FRAMEWORK = "0x1"

VIEW_FUNCTIONS = {
    # activity
    "has_ever_been_touched": "activity::has_ever_been_touched",
    "onboarding_usecs": "activity::get_onboarding_usecs",
    "last_activity_usecs": "activity::get_last_activity_usecs",
    "activity_initialized": "activity::is_initialized",
    # validators
    "current_validators": "stake::get_current_validators",
    "current_bid": "proof_of_fee::current_bid",
    "validator_grade": "grade::get_validator_grade",
    "jail_reputation": "jail::get_jail_reputation",
    "buddies_jailed": "jail::get_count_buddies_jailed",
    # community wallets
    "is_donor_voice": "donor_voice::is_donor_voice",
    "root_registry": "donor_voice::get_root_registry",
    "community_wallet_init": "community_wallet::is_init",
    "is_authorized": "donor_voice_reauth::is_authorized",
    "within_authorize_window": "donor_voice_reauth::is_within_authorize_window",
    "is_reauth_proposed": "donor_voice_governance::is_reauth_proposed",
    "veto_tally": "donor_voice_governance::get_veto_tally",
    # founder and vouching
    "is_founder": "founder::is_founder",
    "has_friends": "founder::has_friends",
    "voucher_score_valid": "founder::is_voucher_score_valid",
    "vouch_score": "vouch_score::evaluate_users_vouchers",
    "given_vouches": "vouch::get_given_vouches",
    "received_vouches": "vouch::get_received_vouches",
    "page_rank_score": "page_rank_lazy::get_cached_score",
    # epoch
    "bidders": "proof_of_fee::get_bidders",
    "max_seats": "epoch_boundary::get_max_seats_offered",
    "filled_seats": "epoch_boundary::get_filled_seats",
    # supply and balances
    "supply_stats": "supply::get_stats",
    "balance": "ol_account::balance",
    # donations
    "donations_received": "donor_voice::get_donations_received",
    "donations_made": "receipts::get_donations_made",
}


def function_path(name: str, framework: str = FRAMEWORK) -> str:
    """Fully qualified Move function for a VIEW_FUNCTIONS key"""
    return f"{framework}::{VIEW_FUNCTIONS[name]}"


# ==================== DECODED TYPES ====================


@dataclass
class ValidatorGrade:
    is_compliant: bool = False
    proposed_blocks: int = 0
    failed_blocks: int = 0


@dataclass
class SupplyStats:
    total: int = 0
    slow_locked: int = 0
    donor_voice: int = 0
    pledge: int = 0
    unlocked: int = 0


@dataclass
class Balance:
    unlocked: int = 0
    total: int = 0


@dataclass
class PairedList:
    """Two parallel lists returned by one view call (e.g. addresses and epochs)"""

    first: List[Any] = field(default_factory=list)
    second: List[Any] = field(default_factory=list)

    def pairs(self) -> List[Tuple[Any, Any]]:
        return list(zip(self.first, self.second))


def decode_grade(raw: Any) -> ValidatorGrade:
    values = normalize(raw, Shape.TUPLE)
    if len(values) < 3:
        return ValidatorGrade()
    return ValidatorGrade(
        is_compliant=normalize(values[0], Shape.BOOL),
        proposed_blocks=to_int(values[1]),
        failed_blocks=to_int(values[2]),
    )


def decode_supply(raw: Any) -> SupplyStats:
    values = [to_int(v) for v in normalize(raw, Shape.TUPLE)]
    values += [0] * (5 - len(values))
    return SupplyStats(*values[:5])


def decode_balance(raw: Any) -> Optional[Balance]:
    """(unlocked, total) pair, None when the response has no such pair"""
    values = normalize(raw, Shape.TUPLE)
    if len(values) < 2:
        return None
    return Balance(unlocked=to_int(values[0]), total=to_int(values[1]))


def decode_paired(raw: Any) -> PairedList:
    """
    Decode [[a, b, ...], [x, y, ...]] into two aligned lists.

    Lists of unequal length are truncated to the shorter one.
    """
    raw = ensure_proper_structures(raw)
    if isinstance(raw, list) and len(raw) == 1 and isinstance(raw[0], list):
        raw = raw[0]
    if not isinstance(raw, list) or len(raw) < 2:
        return PairedList()
    first, second = raw[0], raw[1]
    if not isinstance(first, list) or not isinstance(second, list):
        return PairedList()
    size = min(len(first), len(second))
    return PairedList(first=first[:size], second=second[:size])


# ==================== VIEW CLIENT ====================


class LedgerViews:
    """Typed wrappers over SdkFacade.view"""

    def __init__(self, sdk: SdkFacade, framework: str = FRAMEWORK):
        self.sdk = sdk
        self.framework = framework

    async def call(self, name: str, args: List[Any] = None, type_args: List[str] = None) -> Any:
        return await self.sdk.view(function_path(name, self.framework), type_args or [], args or [])

    async def _bool(self, name: str, address: str) -> bool:
        return normalize(await self.call(name, [address]), Shape.BOOL)

    async def _number(self, name: str, address: str) -> int:
        return to_int(normalize(await self.call(name, [address]), Shape.NUMBER))

    # ---------- validators ----------

    async def current_validators(self) -> List[str]:
        raw = await self.call("current_validators")
        return [normalize_address(a) for a in normalize(raw, Shape.ADDRESS_LIST, "validators")]

    async def current_bid(self, address: str) -> int:
        return await self._number("current_bid", address)

    async def validator_grade(self, address: str) -> ValidatorGrade:
        return decode_grade(await self.call("validator_grade", [address]))

    async def jail_reputation(self, address: str) -> int:
        return await self._number("jail_reputation", address)

    async def buddies_jailed(self, address: str) -> int:
        return await self._number("buddies_jailed", address)

    # ---------- community wallets ----------

    async def is_donor_voice(self, address: str) -> bool:
        return await self._bool("is_donor_voice", address)

    async def root_registry(self) -> List[str]:
        raw = await self.call("root_registry")
        return [normalize_address(a) for a in normalize(raw, Shape.ADDRESS_LIST)]

    async def community_wallet_init(self, address: str) -> bool:
        return await self._bool("community_wallet_init", address)

    async def is_authorized(self, address: str) -> bool:
        return await self._bool("is_authorized", address)

    async def within_authorize_window(self, address: str) -> bool:
        return await self._bool("within_authorize_window", address)

    async def is_reauth_proposed(self, address: str) -> bool:
        return await self._bool("is_reauth_proposed", address)

    async def veto_tally(self, address: str) -> int:
        return await self._number("veto_tally", address)

    # ---------- founder, vouching, activity ----------

    async def is_founder(self, address: str) -> bool:
        return await self._bool("is_founder", address)

    async def has_friends(self, address: str) -> bool:
        return await self._bool("has_friends", address)

    async def voucher_score_valid(self, address: str) -> bool:
        return await self._bool("voucher_score_valid", address)

    async def vouch_score(self, address: str) -> float:
        raw = await self.call("vouch_score", [[self.framework], address])
        return to_float(normalize(raw, Shape.NUMBER))

    async def page_rank_score(self, address: str) -> int:
        return await self._number("page_rank_score", address)

    async def given_vouches(self, address: str) -> PairedList:
        return decode_paired(await self.call("given_vouches", [address]))

    async def received_vouches(self, address: str) -> PairedList:
        return decode_paired(await self.call("received_vouches", [address]))

    async def activity(self, address: str) -> Dict[str, Any]:
        return {
            "has_ever_been_touched": await self._bool("has_ever_been_touched", address),
            "onboarding_usecs": await self._number("onboarding_usecs", address),
            "last_activity_usecs": await self._number("last_activity_usecs", address),
            "is_initialized": await self._bool("activity_initialized", address),
        }

    # ---------- epoch, supply, balance ----------

    async def bidders(self) -> List[str]:
        raw = await self.call("bidders")
        return [normalize_address(a) for a in normalize(raw, Shape.ADDRESS_LIST)]

    async def max_seats(self) -> int:
        return to_int(normalize(await self.call("max_seats"), Shape.NUMBER))

    async def filled_seats(self) -> int:
        return to_int(normalize(await self.call("filled_seats"), Shape.NUMBER))

    async def supply_stats(self) -> SupplyStats:
        return decode_supply(await self.call("supply_stats"))

    async def balance(self, address: str) -> Optional[Balance]:
        return decode_balance(await self.call("balance", [address]))

    # ---------- donations ----------

    async def donations_received(self, address: str) -> List[Dict[str, Any]]:
        paired = decode_paired(await self.call("donations_received", [address]))
        return [
            {"dv_account": address, "donor": normalize_address(donor), "amount": to_int(amount)}
            for donor, amount in paired.pairs()
        ]

    async def donations_made(self, address: str) -> List[Dict[str, Any]]:
        paired = decode_paired(await self.call("donations_made", [address]))
        return [
            {"dv_account": normalize_address(dv), "amount": to_int(amount)}
            for dv, amount in paired.pairs()
        ]
