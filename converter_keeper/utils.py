"""
Common utilities and helper functions for the converter keeper.

This module provides centralized helpers for logging, JSON serialization of
on-chain values, address comparison and fixed-point formatting.
"""

import dataclasses
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Iterable, Optional, Union


# Timestamp utilities
def get_current_timestamp() -> float:
    """Get current Unix timestamp as float."""
    return time.time()


def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# JSON utilities
def safe_json_dump(data: Any, **kwargs) -> str:
    """
    Serialize data to JSON, handling token amounts and dataclass records.

    Integers stay integers (wei amounts exceed float precision), fractions and
    bytes are rendered as strings.

    Args:
        data: Data to serialize
        **kwargs: Additional arguments to json.dumps

    Returns:
        JSON string
    """
    defaults = {"ensure_ascii": False, "indent": 2, "default": _json_default_handler}
    defaults.update(kwargs)
    return json.dumps(data, **defaults)


def _json_default_handler(obj: Any) -> Any:
    """Default JSON serialization handler for custom types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    elif isinstance(obj, Fraction):
        return str(int(obj)) if obj.denominator == 1 else str(obj)
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, (tuple, set, frozenset)):
        return list(obj)
    elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    elif hasattr(obj, "__dict__"):
        return obj.__dict__
    else:
        return str(obj)


# Address utilities
def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive comparison of two hex addresses."""
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def unique_addresses(addresses: Iterable[str]) -> list:
    """Deduplicate addresses case-insensitively, preserving first-seen order."""
    seen = set()
    result = []
    for address in addresses:
        key = address.lower()
        if key not in seen:
            seen.add(key)
            result.append(address)
    return result


# Math utilities
def format_units(value: Union[int, Fraction], decimals: int) -> str:
    """
    Render a fixed-point integer as a decimal string.

    Args:
        value: Amount in the smallest unit
        decimals: Number of decimals of the unit

    Returns:
        Decimal string without trailing zeros, e.g. ``format_units(1500, 3) == "1.5"``
    """
    if isinstance(value, Fraction):
        value = int(value)
    negative = value < 0
    digits = str(abs(value)).rjust(decimals + 1, "0")
    integer = digits[: len(digits) - decimals] if decimals else digits
    fraction = digits[len(digits) - decimals :].rstrip("0") if decimals else ""
    text = f"{integer}.{fraction}" if fraction else integer
    return f"-{text}" if negative else text


def format_percent(ratio: Fraction, places: int = 2) -> str:
    """Format a ratio as a percentage string without the sign, 0.009 -> "0.90"."""
    return f"{float(ratio * 100):.{places}f}"


# Logging utilities
def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    extra: Optional[Dict[str, Any]] = None,
    minimal: bool = False,
) -> logging.Logger:
    """
    Get a structured logger with consistent formatting and extra context.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        extra: Additional context fields to include in all log messages
        minimal: If True, use simplified format (time + message only)

    Returns:
        Configured logger with structured output
    """
    logger = logging.getLogger(name)

    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()

        if minimal:
            format_str = "%(asctime)s | %(message)s"
        else:
            format_str = (
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | " "%(message)s"
            )

        if extra:
            extra_fields = " | ".join([f"{k}=%(extra_{k})s" for k in extra.keys()])
            format_str = format_str.replace(
                " | %(message)s", f" | {extra_fields} | %(message)s"
            )

        formatter = logging.Formatter(format_str, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if extra:
            logger = logging.LoggerAdapter(
                logger, {"extra_" + k: v for k, v in extra.items()}
            )

    return logger


# Dictionary utilities
def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        update: Dictionary to merge into base

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in update.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result
