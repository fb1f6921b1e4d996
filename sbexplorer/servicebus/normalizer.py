"""
AMQP Value Normalization

Converts broker-native values (datetime-offset described types, split-word
64-bit integers, AMQP maps, SDK objects) into plain Python values that can be
logged, returned over the API and sent back to the broker.

Decoders run in a fixed priority order and the first structural match wins:

1. ``datetime`` instances
2. ``com.microsoft:datetime-offset`` described values (8-byte tick count)
3. split-word integers (``low``/``high`` pairs)
4. map-like containers
5. self-serializing objects (``model_dump()``/``to_dict()``)
6. plain structural copy

Author: SBExplorer Contributors
Date: 2026-01-15
"""

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .logging_utils import StructuredLogger


logger = StructuredLogger('sbexplorer.servicebus.normalizer')

DATETIME_OFFSET_DESCRIPTOR = "com.microsoft:datetime-offset"

# 100ns ticks between 0001-01-01 and 1970-01-01
TICKS_AT_UNIX_EPOCH = 621_355_968_000_000_000
TICKS_PER_MILLISECOND = 10_000

# Reconstructed integers in this range are read as millisecond timestamps
# (2001-09-09 to 2033-05-18). A genuine numeric property in the same range
# is misreported as a date.
TIMESTAMP_MS_MIN = 1_000_000_000_000
TIMESTAMP_MS_MAX = 2_000_000_000_000

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Nesting deeper than this is cut to a type placeholder
MAX_DEPTH = 64

_NO_MATCH = object()


def format_iso(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def millis_to_iso(millis: int) -> str:
    """Format milliseconds since the Unix epoch as ISO-8601."""
    return format_iso(UNIX_EPOCH + timedelta(milliseconds=millis))


def ticks_to_iso(ticks: int) -> str:
    """Format a 100ns tick count (since year 1) as ISO-8601."""
    return millis_to_iso((ticks - TICKS_AT_UNIX_EPOCH) // TICKS_PER_MILLISECOND)


def normalize(value: Any) -> Any:
    """
    Convert a broker-native value to a plain value.

    Never raises: encodings that cannot be decoded degrade to a structural
    copy, and self-referencing containers are cut at the repeat.

    Args:
        value: Any value received from the broker

    Returns:
        Strings, numbers, booleans, None, bytes, lists and str-keyed dicts
    """
    return _normalize(value, frozenset())


def _normalize(value: Any, ancestors: FrozenSet[int]) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value

    if isinstance(value, datetime):
        return format_iso(value)

    if id(value) in ancestors or len(ancestors) >= MAX_DEPTH:
        logger.warning(
            "Recursive or too deeply nested value, truncating",
            value_type=type(value).__name__,
            depth=len(ancestors)
        )
        return _placeholder(value)
    ancestors = ancestors | {id(value)}

    for decoder in _DECODERS:
        try:
            result = decoder(value, ancestors)
        except Exception as e:
            logger.warning(
                f"Decoder {decoder.__name__} failed, trying the next one",
                value_type=type(value).__name__,
                error=str(e)
            )
            continue
        if result is not _NO_MATCH:
            return result

    try:
        return _structural_copy(value, ancestors)
    except Exception as e:
        logger.warning(
            "Structural copy failed, keeping type placeholder",
            value_type=type(value).__name__,
            error=str(e)
        )
        return _placeholder(value)


def _placeholder(value: Any) -> str:
    return f"<{type(value).__name__}>"


def normalize_properties(properties: Optional[Mapping]) -> Dict[str, Any]:
    """Normalize an application property bag into a str-keyed dict."""
    if not properties:
        return {}
    result = normalize(properties)
    if isinstance(result, dict):
        return result
    logger.warning(
        "Application properties did not normalize to a map",
        result_type=type(result).__name__
    )
    return {}


# ========== Decoders ==========

def _field(value: Any, name: str) -> Any:
    """Read a field from a mapping or an object, or _NO_MATCH."""
    if isinstance(value, Mapping):
        return value.get(name, _NO_MATCH)
    return getattr(value, name, _NO_MATCH)


def _has_type_tag(value: Any) -> bool:
    if isinstance(value, Mapping):
        return "type" in value
    return hasattr(value, "type")


def _decode_datetime_offset(value: Any, ancestors: FrozenSet[int]) -> Any:
    """Decode a ``com.microsoft:datetime-offset`` described value."""
    descriptor = _field(value, "descriptor")
    if descriptor is _NO_MATCH or descriptor is None:
        return _NO_MATCH
    descriptor_value = _field(descriptor, "value")
    if descriptor_value is _NO_MATCH:
        descriptor_value = descriptor
    if isinstance(descriptor_value, bytes):
        descriptor_value = descriptor_value.decode("utf-8", errors="replace")
    if descriptor_value != DATETIME_OFFSET_DESCRIPTOR:
        return _NO_MATCH

    payload = _field(value, "value")
    if payload is _NO_MATCH or payload is None:
        return _NO_MATCH

    raw = _tick_bytes(payload)
    if raw is None:
        logger.warning(
            "Malformed datetime-offset value, keeping structural copy",
            payload_type=type(payload).__name__
        )
        return _NO_MATCH

    ticks = int.from_bytes(raw, "big", signed=False)
    try:
        return ticks_to_iso(ticks)
    except OverflowError:
        logger.warning("datetime-offset tick count out of range", ticks=ticks)
        return _NO_MATCH


def _tick_bytes(payload: Any) -> Optional[bytes]:
    """Coerce an 8-byte payload given as bytes, ints or an index map."""
    try:
        if isinstance(payload, (bytes, bytearray, memoryview)):
            raw = bytes(payload)
        elif isinstance(payload, Mapping):
            # JSON round-trips turn the index keys into strings
            raw = bytes(
                payload[i] if i in payload else payload[str(i)]
                for i in range(len(payload))
            )
        elif isinstance(payload, (list, tuple)):
            raw = bytes(payload)
        else:
            return None
    except (KeyError, TypeError, ValueError):
        return None
    return raw if len(raw) == 8 else None


def _decode_split_word(value: Any, ancestors: FrozenSet[int]) -> Any:
    """Reconstruct a 64-bit integer carried as two 32-bit words."""
    if _has_type_tag(value):
        return _NO_MATCH
    low = _field(value, "low")
    high = _field(value, "high")
    if low is _NO_MATCH or high is _NO_MATCH:
        return _NO_MATCH
    if not _is_int(low) or not _is_int(high):
        return _NO_MATCH

    number = low + high * 2 ** 32
    if TIMESTAMP_MS_MIN <= number < TIMESTAMP_MS_MAX:
        return millis_to_iso(number)
    return number


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _decode_map(value: Any, ancestors: FrozenSet[int]) -> Any:
    """Flatten a map-like container into an ordered str-keyed dict."""
    if _has_type_tag(value):
        return _NO_MATCH
    items = getattr(value, "items", None)
    if not callable(items):
        return _NO_MATCH
    try:
        pairs = list(items())
    except Exception as e:
        logger.warning(
            "items() failed, falling back to a structural copy",
            value_type=type(value).__name__,
            error=str(e)
        )
        return _NO_MATCH
    return {_key(key): _normalize(item, ancestors) for key, item in pairs}


def _key(key: Any) -> str:
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    return str(key)


def _decode_self_serializing(value: Any, ancestors: FrozenSet[int]) -> Any:
    """Invoke ``model_dump()`` or ``to_dict()`` and normalize the result."""
    if isinstance(value, type):
        return _NO_MATCH
    for method_name in ("model_dump", "to_dict"):
        method = getattr(value, method_name, None)
        if not callable(method):
            continue
        try:
            serialized = method()
        except Exception as e:
            logger.warning(
                f"{method_name}() failed",
                value_type=type(value).__name__,
                error=str(e)
            )
            continue
        if serialized is value:
            return _NO_MATCH
        return _normalize(serialized, ancestors)
    return _NO_MATCH


_DECODERS: Tuple = (
    _decode_datetime_offset,
    _decode_split_word,
    _decode_map,
    _decode_self_serializing,
)


def _structural_copy(value: Any, ancestors: FrozenSet[int]) -> Any:
    """Copy composites recursively; pass binary and unknown leaves through."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, Mapping):
        return {_key(key): _normalize(item, ancestors) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize(item, ancestors) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    attributes = getattr(value, "__dict__", None)
    if isinstance(attributes, dict) and not isinstance(value, type):
        return {
            key: _normalize(item, ancestors)
            for key, item in attributes.items()
            if not key.startswith("_")
        }
    return value
