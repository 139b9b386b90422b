"""
Chain head metrics derived from cached transactions
"""

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from libra_client import Transaction
from normalizer import to_int

logger = logging.getLogger(__name__)


def usecs_to_ms(timestamp: str) -> int:
    """Ledger timestamps are microsecond strings"""
    return to_int(timestamp) // 1000


def calculate_block_time(
    version1: int, timestamp1_ms: int, version2: int, timestamp2_ms: int
) -> Optional[float]:
    """Average milliseconds per version between two points, None when undefined"""
    version_diff = abs(version2 - version1)
    if version_diff == 0:
        return None
    return abs(timestamp2_ms - timestamp1_ms) / version_diff


def block_time_from_transactions(transactions: List[Transaction]) -> Optional[float]:
    """Block time from the two newest transactions of a list"""
    if len(transactions) < 2:
        logger.debug("Not enough transactions to calculate block time")
        return None

    latest, previous = sorted(transactions, key=lambda tx: tx.version, reverse=True)[:2]
    latest_ms = usecs_to_ms(latest.timestamp)
    previous_ms = usecs_to_ms(previous.timestamp)
    if not latest.version or not previous.version or not latest_ms or not previous_ms:
        logger.warning("Missing data for block time calculation")
        return None

    return calculate_block_time(latest.version, latest_ms, previous.version, previous_ms)


def relative_time_string(timestamp_ms: int, now_ms: Optional[int] = None) -> str:
    """Human readable age of a wall-clock timestamp"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    diff_seconds = (now_ms - timestamp_ms) // 1000
    diff_minutes = diff_seconds // 60
    diff_hours = diff_minutes // 60
    diff_days = diff_hours // 24

    if diff_seconds < 60:
        return "just now"
    if diff_minutes < 60:
        return f"{diff_minutes}m ago"
    if diff_hours < 24:
        return f"{diff_hours}h ago"
    if diff_days < 7:
        return f"{diff_days}d ago"
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime(
        "%Y-%m-%d %H:%M:%S UTC"
    )
