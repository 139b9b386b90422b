"""
Vouch expiry classification

Expiry is never stored; it is derived from the epoch a vouch was given and
the current epoch whenever vouches are read.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

DEFAULT_EXPIRY_WINDOW = 45
DEFAULT_WARNING_THRESHOLD = 10


class VouchStatus(Enum):
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    PENDING = "pending"


@dataclass(frozen=True)
class VouchEntry:
    """One vouch edge. Direction comes from which list holds it."""

    voucher: str
    target: str
    epoch_given: int


def classify(
    epoch_given: int,
    current_epoch: int,
    expiry_window: int = DEFAULT_EXPIRY_WINDOW,
    warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
) -> VouchStatus:
    """Classify a vouch against the current epoch (unknown epoch is <= 0)"""
    if current_epoch <= 0:
        return VouchStatus.PENDING

    remaining = epoch_given + expiry_window - current_epoch
    if remaining <= 0:
        return VouchStatus.EXPIRED
    if remaining <= warning_threshold:
        return VouchStatus.EXPIRING_SOON
    return VouchStatus.ACTIVE


def epochs_remaining(epoch_given: int, current_epoch: int, expiry_window: int) -> int:
    return max(0, epoch_given + expiry_window - current_epoch)


def sort_for_display(
    entries: List[VouchEntry],
    counterpart: str,
    current_epoch: int,
    expiry_window: int = DEFAULT_EXPIRY_WINDOW,
    warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
) -> List[VouchEntry]:
    """
    Order vouches for display.

    Non-expired vouches come first, oldest epoch first. Expired vouches
    follow, most recently expired first. Ties sort by the counterpart
    address ("voucher" for inbound lists, "target" for outbound ones).
    With an unknown epoch every vouch is pending and sorts newest first.
    """
    if current_epoch <= 0:
        return sorted(
            entries, key=lambda e: (-e.epoch_given, getattr(e, counterpart))
        )

    def sort_key(entry: VouchEntry):
        status = classify(entry.epoch_given, current_epoch, expiry_window, warning_threshold)
        address = getattr(entry, counterpart)
        if status == VouchStatus.EXPIRED:
            return (1, -entry.epoch_given, address)
        return (0, entry.epoch_given, address)

    return sorted(entries, key=sort_key)


def count_active(
    entries: List[VouchEntry],
    current_epoch: int,
    expiry_window: int = DEFAULT_EXPIRY_WINDOW,
    warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
) -> int:
    """Vouches that are not expired (pending counts as active)"""
    return sum(
        1
        for e in entries
        if classify(e.epoch_given, current_epoch, expiry_window, warning_threshold)
        != VouchStatus.EXPIRED
    )


def classified_view(
    entries: List[VouchEntry],
    counterpart: str,
    current_epoch: int,
    expiry_window: int = DEFAULT_EXPIRY_WINDOW,
    warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
) -> List[Dict[str, Any]]:
    """Sorted vouches with their status attached, ready for serialization"""
    ordered = sort_for_display(entries, counterpart, current_epoch, expiry_window, warning_threshold)
    return [
        {
            "address": getattr(e, counterpart),
            "epoch_given": e.epoch_given,
            "status": classify(e.epoch_given, current_epoch, expiry_window, warning_threshold).value,
            "epochs_remaining": epochs_remaining(e.epoch_given, current_epoch, expiry_window)
            if current_epoch > 0
            else None,
        }
        for e in ordered
    ]
