"""
Response normalization for view-function results

View functions on the ledger answer in many wire shapes: bare scalars,
singleton arrays, arrays of arrays, objects keyed "0".."n", objects with a
named collection field, or a comma-joined string posing as a list element.
This module coerces all of them into canonical Python values.

Decoding is a small decision table of matchers tried in priority order:

    named field > nested array > singleton unwrap > raw passthrough

Each matcher returns a decoded value or NO_MATCH. When every matcher misses,
the shape's zero value is returned. normalize() never raises.
"""

import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Union

logger = logging.getLogger(__name__)


class Shape(Enum):
    """Expected result shapes"""

    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ADDRESS_LIST = "address_list"
    TUPLE = "tuple"


class _NoMatch:
    def __repr__(self) -> str:
        return "NO_MATCH"

    def __bool__(self) -> bool:
        return False


NO_MATCH = _NoMatch()

ADDRESS_KEYS = ("addr", "address")

SCALAR_SHAPES = (Shape.BOOL, Shape.NUMBER, Shape.STRING)


def zero_value(shape: Shape) -> Any:
    """Value returned when nothing in a response matches the shape"""
    if shape == Shape.BOOL:
        return False
    if shape == Shape.NUMBER:
        return 0
    if shape == Shape.STRING:
        return ""
    return []


# ==================== STRUCTURE HELPERS ====================


def _is_array_like(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and len(value) > 0
        and all(isinstance(k, str) and k.isdigit() for k in value)
    )


def ensure_proper_structures(value: Any) -> Any:
    """
    Recursively convert objects keyed "0".."n" into lists.

    Some transports serialize arrays as index-keyed objects. Everything
    else is returned unchanged (dicts are rebuilt, never mutated).
    """
    if _is_array_like(value):
        return [ensure_proper_structures(value[k]) for k in sorted(value, key=int)]
    if isinstance(value, dict):
        return {k: ensure_proper_structures(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [ensure_proper_structures(v) for v in value]
    return value


def to_int(value: Any, default: int = 0) -> int:
    """Parse an integer from a u64 string or number"""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError):
            return default


def to_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


# ==================== SCALAR COERCION ====================


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
    return NO_MATCH


def _coerce_number(value: Any) -> Any:
    if isinstance(value, bool):
        return NO_MATCH
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return NO_MATCH
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return NO_MATCH
    return NO_MATCH


def _coerce_string(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return NO_MATCH


def _split_addresses(text: str) -> List[str]:
    return [part.strip() for part in text.split(",") if part.strip()]


def _address_of(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in ADDRESS_KEYS:
            if isinstance(item.get(key), str):
                return item[key]
    return None


def _coerce_address_list(value: Any) -> Any:
    if isinstance(value, str):
        return _split_addresses(value)

    if isinstance(value, dict):
        items = list(value.values())
    elif isinstance(value, list):
        items = value
    else:
        return NO_MATCH

    addresses: List[str] = []
    for item in items:
        address = _address_of(item)
        if address is None:
            continue
        addresses.extend(_split_addresses(address))
    if items and not addresses:
        return NO_MATCH
    return addresses


def _coerce_tuple(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    return NO_MATCH


_COERCERS = {
    Shape.BOOL: _coerce_bool,
    Shape.NUMBER: _coerce_number,
    Shape.STRING: _coerce_string,
    Shape.ADDRESS_LIST: _coerce_address_list,
    Shape.TUPLE: _coerce_tuple,
}


# ==================== MATCHERS ====================


def _match_named_field(raw: Any, shape: Shape, field: Optional[str]) -> Any:
    if field and isinstance(raw, dict) and field in raw:
        return _decode(raw[field], shape, None)
    return NO_MATCH


def _match_nested_array(raw: Any, shape: Shape, field: Optional[str]) -> Any:
    if not isinstance(raw, list):
        return NO_MATCH
    for item in raw:
        if isinstance(item, list):
            return _decode(item, shape, field)
    return NO_MATCH


def _match_singleton(raw: Any, shape: Shape, field: Optional[str]) -> Any:
    if shape in SCALAR_SHAPES and isinstance(raw, list) and len(raw) == 1:
        return _decode(raw[0], shape, field)
    return NO_MATCH


def _match_passthrough(raw: Any, shape: Shape, field: Optional[str]) -> Any:
    return _COERCERS[shape](raw)


MATCHERS: List[Callable[[Any, Shape, Optional[str]], Any]] = [
    _match_named_field,
    _match_nested_array,
    _match_singleton,
    _match_passthrough,
]


def _decode(raw: Any, shape: Shape, field: Optional[str]) -> Any:
    raw = ensure_proper_structures(raw)
    for matcher in MATCHERS:
        result = matcher(raw, shape, field)
        if result is not NO_MATCH:
            return result
    return NO_MATCH


def normalize(raw: Any, shape: Shape, field: Optional[str] = None) -> Any:
    """
    Coerce a raw view-function result into the expected shape.

    Args:
        raw: Result as returned by the transport
        shape: Expected canonical shape
        field: Optional collection field name for object responses

    Returns:
        Decoded value, or the shape's zero value when nothing matches
    """
    try:
        result = _decode(raw, shape, field)
    except Exception as e:
        logger.warning(f"Normalization error for {shape.value}: {e}")
        return zero_value(shape)

    if result is NO_MATCH:
        logger.debug(f"No {shape.value} match in response: {raw!r}")
        return zero_value(shape)
    return result


def normalize_bool(raw: Any) -> bool:
    return normalize(raw, Shape.BOOL)


def normalize_number(raw: Any) -> Union[int, float]:
    return normalize(raw, Shape.NUMBER)


def normalize_addresses(raw: Any, field: Optional[str] = None) -> List[str]:
    return normalize(raw, Shape.ADDRESS_LIST, field)


def normalize_tuple(raw: Any) -> List[Any]:
    return normalize(raw, Shape.TUPLE)
