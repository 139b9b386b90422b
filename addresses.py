"""
Address and transaction hash canonicalization
"""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

PATTERNS = {
    "address": re.compile(r"^(0x)?[a-fA-F0-9]{10,128}$"),
    "hex": re.compile(r"^[a-fA-F0-9]+$"),
    "padded_prefix": re.compile(r"^0{32}[^0]"),
}

ADDRESS_HEX_LENGTH = 64


def _strip_prefix(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def normalize_address(address: str) -> str:
    """Return the canonical form: lowercase, 0x prefix, 64 hex chars."""
    clean = _strip_prefix(address.strip()).lower()
    return "0x" + clean.rjust(ADDRESS_HEX_LENGTH, "0")


def strip_leading_zeros(address: str) -> str:
    """
    Drop the 32 zero padding characters used by short addresses.

    Only exactly 32 leading zeros followed by a non-zero digit are removed.
    The result always carries a 0x prefix.
    """
    if not address:
        return address

    clean = _strip_prefix(address)
    if PATTERNS["padded_prefix"].match(clean):
        clean = clean[32:]
    return "0x" + clean


def is_valid_address_format(value: str) -> bool:
    """Check that value looks like a hex account address"""
    if not isinstance(value, str):
        return False
    return bool(PATTERNS["address"].match(value))


def normalize_transaction_hash(tx_hash: Optional[str]) -> Optional[str]:
    """
    Canonicalize a transaction hash to 0x-prefixed hex.

    Hashes are never padded. Returns None for empty or non-hex input.
    """
    if not tx_hash or not tx_hash.strip() or tx_hash == "undefined":
        logger.debug(f"Empty transaction hash rejected: {tx_hash!r}")
        return None

    clean = _strip_prefix(tx_hash.strip())
    if not PATTERNS["hex"].match(clean):
        logger.warning(f"Invalid hash format (non-hex characters): {tx_hash}")
        return None

    return "0x" + clean.lower()


def same_address(a: str, b: str) -> bool:
    """Compare two addresses in canonical form"""
    if not a or not b:
        return False
    return normalize_address(a) == normalize_address(b)
